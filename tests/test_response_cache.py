"""Tests for the per-conversation answer cache."""

from __future__ import annotations

import uuid

import pytest

from replyflow.services.ai.response import AiAnswer
from replyflow.services.ai.response_cache import ResponseCache, cache_key, normalize_message


def test_normalize_message_ignores_case_spacing_and_punctuation():
    assert normalize_message("  Do you   ship to KL?! ") == "do you ship to kl"
    assert normalize_message("snake_case") == "snakecase"
    assert normalize_message("Ціна?") == "ціна"


def test_cache_key_scopes_by_company_knowledge_and_conversation():
    company = uuid.uuid4()
    base = cache_key(company, "Hello", ["kb1"])
    assert base == cache_key(company, "hello!", ["kb1"])
    assert base != cache_key(company, "hello", ["kb2"])
    assert base != cache_key(uuid.uuid4(), "hello", ["kb1"])
    conv = uuid.uuid4()
    assert cache_key(company, "hello", ["kb1"], conv).endswith(f":{conv}")


@pytest.mark.asyncio
async def test_round_trip_marks_answer_as_cached(store):
    cache = ResponseCache(store, ttl_seconds=60)
    company, conv = uuid.uuid4(), uuid.uuid4()
    answer = AiAnswer(
        text="We ship in 2 days.", provider="openai", model="gpt-4o",
        images=["https://cdn.example.com/a.jpg"], usage={"total_tokens": 42},
    )
    await cache.put(company, "Shipping time?", answer, [], conv)

    hit = await cache.get(company, "shipping   time", [], conv)
    assert hit is not None
    assert hit.cached is True
    assert hit.text == "We ship in 2 days."
    assert hit.images == ["https://cdn.example.com/a.jpg"]
    assert hit.model == "gpt-4o (cached)"
    assert hit.usage == {"cached": True, "original_tokens": 42}

    assert await cache.get(company, "shipping time", [], uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(store):
    cache = ResponseCache(store)
    company = uuid.uuid4()
    await store.set(cache_key(company, "hi"), "{not json", 60)
    assert await cache.get(company, "hi") is None
