"""Tests for one AI turn end to end, with scripted providers."""

from __future__ import annotations

import uuid

import httpx
import pytest

from replyflow.config import Settings
from replyflow.models import (
    AiConfiguration,
    AiPersonality,
    CalendarConfiguration,
    Customer,
    KnowledgeBase,
    KnowledgeChunk,
    MediaProcessingResult,
    Message,
    Product,
)
from replyflow.models.base import utcnow
from replyflow.services.ai.media_context import ImageFetcher
from replyflow.services.ai.orchestrator import AiOrchestrator
from replyflow.services.ai.providers.registry import ProviderRegistry
from replyflow.services.ai.rate_limiter import RateLimiter, RateLimitTable
from replyflow.services.ai.response import AiAnswer, AiError, AiErrorKind, AiResponse
from replyflow.services.ai.response_cache import ResponseCache
from replyflow.services.products.retrieval import ProductRetrievalService
from replyflow.services.rag.retrieval import RetrievalService
from tests.fakes import FakeEmbedder, ScriptedAdapter

SETTINGS = Settings(encryption_key="test", rag_similarity_threshold=0.5)


def _image_fetcher(status: int = 200) -> ImageFetcher:
    return ImageFetcher(transport=httpx.MockTransport(
        lambda r: httpx.Response(status, content=b"\x89PNG", headers={"content-type": "image/png"})
    ))


def _orchestrator(store, *adapters, table=None, fetcher=None, embedder=None) -> tuple[AiOrchestrator, RateLimiter]:
    registry = ProviderRegistry(SETTINGS)
    for adapter in adapters:
        registry.register(adapter.name, adapter)
    embedder = embedder or FakeEmbedder(default=[1.0, 0.0])
    limiter = RateLimiter(store, table or RateLimitTable.default())
    orchestrator = AiOrchestrator(
        providers=registry,
        retrieval=RetrievalService(embedder),
        products=ProductRetrievalService(embedder),
        rate_limiter=limiter,
        cache=ResponseCache(store),
        store=store,
        image_fetcher=fetcher or _image_fetcher(),
        settings=SETTINGS,
    )
    return orchestrator, limiter


async def _customer_says(db, conversation, text, **kwargs) -> Message:
    message = Message(
        conversation_id=conversation.id, sender_type="customer", content=text, created_at=utcnow(), **kwargs
    )
    db.add(message)
    await db.flush()
    return message


# ── Configuration ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_not_configured(db, store, conversation):
    orchestrator, _ = _orchestrator(store, ScriptedAdapter("openai"))
    result = await orchestrator.respond(db, conversation, "hello")
    assert isinstance(result, AiError)
    assert result.kind is AiErrorKind.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_auto_respond_disabled(db, store, conversation, ai_configuration):
    ai_configuration.auto_respond = False
    orchestrator, _ = _orchestrator(store, ScriptedAdapter("openai"))
    result = await orchestrator.respond(db, conversation, "hello")
    assert result.kind is AiErrorKind.AUTO_RESPOND_DISABLED


@pytest.mark.asyncio
async def test_personality_overrides_company_default(db, store, company, conversation, ai_configuration):
    personality = AiPersonality(
        company_id=company.id, name="Sales Sam", agent_type="sales", provider="claude", model="claude-x",
        personality_tone="upbeat",
    )
    db.add(personality)
    await db.flush()
    claude = ScriptedAdapter("claude")
    orchestrator, _ = _orchestrator(store, ScriptedAdapter("openai"), claude)

    answer = await orchestrator.respond(db, conversation, "hello", options={"personality_id": str(personality.id)})

    assert answer.provider == "claude"
    assert answer.personality_name == "Sales Sam"
    assert answer.agent_type == "sales"
    assert "Tone: upbeat" in claude.calls[0]["context"].system


@pytest.mark.asyncio
async def test_missing_personality_falls_back_to_default(db, store, conversation, ai_configuration):
    orchestrator, _ = _orchestrator(store, ScriptedAdapter("openai"))
    answer = await orchestrator.respond(db, conversation, "hello", options={"personality_id": str(uuid.uuid4())})
    assert answer.provider == "openai"
    assert answer.personality_id is None
    assert "personality_not_found" in answer.degraded


# ── Happy path and cache ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_answer_is_post_processed_counted_and_cached(db, store, conversation, ai_configuration):
    await _customer_says(db, conversation, "Do you ship?")
    openai = ScriptedAdapter("openai", [
        AiResponse.success("We ship!\n\n[PRODUCT_IMAGE: https://cdn.example.com/a.jpg]", "gpt-4o"),
    ])
    orchestrator, limiter = _orchestrator(store, openai)

    answer = await orchestrator.respond(db, conversation, "Do you ship?")

    assert isinstance(answer, AiAnswer)
    assert answer.text == "We ship!"
    assert answer.images == ["https://cdn.example.com/a.jpg"]
    assert answer.provider == "openai"
    assert answer.cached is False
    assert (await limiter.get_usage("openai", "gpt-4o"))["current"] == 1

    call = openai.calls[0]
    assert call["kind"] == "text"
    assert call["options"]["model"] == "gpt-4o"
    assert "Acme Outdoor" in call["context"].system
    assert [t.content for t in call["context"].history] == ["Do you ship?"]

    again = await orchestrator.respond(db, conversation, "do you SHIP")
    assert again.cached is True
    assert again.text == "We ship!"
    assert len(openai.calls) == 1


@pytest.mark.asyncio
async def test_low_similarity_knowledge_is_dropped(db, store, company, conversation, ai_configuration):
    kb = KnowledgeBase(company_id=company.id, title="FAQ", content="")
    db.add(kb)
    await db.flush()
    db.add_all([
        KnowledgeChunk(knowledge_base_id=kb.id, chunk_index=0, content="Relevant shipping fact", embedding=[1.0, 0.0]),
        KnowledgeChunk(knowledge_base_id=kb.id, chunk_index=1, content="Unrelated trivia", embedding=[0.0, 1.0]),
    ])
    await db.flush()
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai)

    await orchestrator.respond(db, conversation, "shipping?")

    system = openai.calls[0]["context"].system
    assert "Relevant shipping fact" in system
    assert "Unrelated trivia" not in system


@pytest.mark.asyncio
async def test_keyword_fallback_knowledge_is_kept(db, store, company, conversation, ai_configuration):
    db.add(KnowledgeBase(company_id=company.id, title="Shipping", content="Orders leave the warehouse within 3 days."))
    await db.flush()
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai, embedder=FakeEmbedder(fail=True))

    answer = await orchestrator.respond(db, conversation, "shipping time?")

    assert "Orders leave the warehouse within 3 days." in openai.calls[0]["context"].system
    assert "retrieval_failure" in answer.degraded


# ── Media ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_media_results_shape_the_turn(db, store, company, conversation, ai_configuration):
    trigger = await _customer_says(db, conversation, "[Image]", message_type="audio")
    db.add_all([
        MediaProcessingResult(
            message_id=trigger.id, media_type="audio", status="completed",
            text_content="do you have this in stock", analysis_data={"language": "ms"},
        ),
        MediaProcessingResult(
            message_id=trigger.id, media_type="image", status="completed",
            text_content="a green two person tent", analysis_data={"product_search": True},
        ),
        MediaProcessingResult(
            message_id=trigger.id, media_type="image", status="pending", text_content="ignored",
        ),
    ])
    await db.flush()
    embedder = FakeEmbedder(default=[1.0, 0.0])
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai, embedder=embedder)

    answer = await orchestrator.respond(db, conversation, "[Image]", trigger)
    await orchestrator.respond(db, conversation, "[Image]", trigger)

    assert isinstance(answer, AiAnswer)
    sent = openai.calls[0]["text"]
    assert '[Customer sent voice message]: "do you have this in stock"' in sent
    assert "[Customer sent an image showing: a green two person tent]" in sent
    assert "[Image]" not in sent
    assert "ignored" not in sent
    assert "# MEDIA CONTEXT" in openai.calls[0]["context"].system

    assert embedder.calls[0] == ["a green two person tent"]
    customer = await db.get(Customer, conversation.customer_id)
    assert customer.language == "ms"

    assert len(openai.calls) == 2
    assert not any(key.startswith("ai_response:") for key in store._data)


@pytest.mark.asyncio
async def test_recent_images_use_vision_and_bypass_cache(db, store, conversation, ai_configuration):
    await _customer_says(
        db, conversation, None, message_type="image", media=[{"type": "image", "url": "https://img.example.com/1.png"}]
    )
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai)

    await orchestrator.respond(db, conversation, "what is this?")
    await orchestrator.respond(db, conversation, "what is this?")

    assert [c["kind"] for c in openai.calls] == ["vision", "vision"]
    image = openai.calls[0]["context"].images[0]
    assert image.mime_type == "image/png"
    assert not any(key.startswith("ai_response:") for key in store._data)


@pytest.mark.asyncio
async def test_failed_image_download_is_recorded(db, store, conversation, ai_configuration):
    await _customer_says(
        db, conversation, None, message_type="image", media=[{"type": "image", "url": "https://img.example.com/1.png"}]
    )
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai, fetcher=_image_fetcher(status=404))

    answer = await orchestrator.respond(db, conversation, "see photo")

    assert openai.calls[0]["kind"] == "text"
    assert "image_download_failure" in answer.degraded


# ── Rate limits ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rate_limited_model_switches_to_alternative(db, store, conversation, ai_configuration):
    table = RateLimitTable.build(
        {"openai": {"gpt-4o": 1, "gpt-4o-mini": 5}}, {"openai": {"gpt-4o": ["gpt-4o-mini"]}}
    )
    openai = ScriptedAdapter("openai")
    orchestrator, limiter = _orchestrator(store, openai, table=table)
    await limiter.record_request("openai", "gpt-4o")

    answer = await orchestrator.respond(db, conversation, "hello")

    assert isinstance(answer, AiAnswer)
    assert openai.calls[0]["options"]["model"] == "gpt-4o-mini"
    assert (await limiter.get_usage("openai", "gpt-4o-mini"))["current"] == 1


@pytest.mark.asyncio
async def test_usage_follows_the_model_the_adapter_picked(db, store, conversation, ai_configuration):
    ai_configuration.primary_model = None
    openai = ScriptedAdapter("openai", [AiResponse.success("hi", "gpt-4o")], default_model="gpt-5-mini")
    orchestrator, limiter = _orchestrator(store, openai)

    answer = await orchestrator.respond(db, conversation, "hello")

    assert answer.model == "gpt-4o"
    assert openai.calls[0]["options"]["model"] == "gpt-5-mini"
    assert (await limiter.get_usage("openai", "gpt-4o"))["current"] == 1
    assert (await limiter.get_usage("openai", "gpt-5-mini"))["current"] == 0


@pytest.mark.asyncio
async def test_rate_limited_without_alternative(db, store, conversation, ai_configuration):
    table = RateLimitTable.build({"openai": {"gpt-4o": 1}}, {})
    openai = ScriptedAdapter("openai")
    orchestrator, limiter = _orchestrator(store, openai, table=table)
    await limiter.record_request("openai", "gpt-4o")

    result = await orchestrator.respond(db, conversation, "hello")

    assert result.kind is AiErrorKind.RATE_LIMITED
    assert result.usage["current"] == 1
    assert openai.calls == []


# ── Provider failure and fallback ───────────────────────────────────


@pytest.mark.asyncio
async def test_provider_error_without_fallback(db, store, conversation, ai_configuration):
    openai = ScriptedAdapter("openai", [AiResponse.failure("upstream exploded", model="gpt-4o")])
    orchestrator, limiter = _orchestrator(store, openai)

    result = await orchestrator.respond(db, conversation, "hello")

    assert result.kind is AiErrorKind.PROVIDER_ERROR
    assert result.message == "upstream exploded"
    assert (await limiter.get_usage("openai", "gpt-4o"))["current"] == 0


@pytest.mark.asyncio
async def test_fallback_provider_answers_after_primary_failure(db, store, conversation, ai_configuration):
    ai_configuration.fallback_provider = "claude"
    openai = ScriptedAdapter("openai", [AiResponse.failure("timeout")])
    claude = ScriptedAdapter("claude", [AiResponse.success("Backup answer", "claude-x")], default_model="claude-x")
    orchestrator, limiter = _orchestrator(store, openai, claude)

    answer = await orchestrator.respond(db, conversation, "hello")

    assert answer.provider == "claude"
    assert answer.text == "Backup answer"
    assert claude.calls[0]["options"]["model"] == "claude-x"
    assert (await limiter.get_usage("claude", "claude-x"))["current"] == 1
    assert claude.calls[0]["context"].system == openai.calls[0]["context"].system


@pytest.mark.asyncio
async def test_unknown_primary_provider_still_falls_back(db, store, conversation, ai_configuration):
    ai_configuration.primary_provider = "mistral"
    ai_configuration.fallback_provider = "claude"
    claude = ScriptedAdapter("claude")
    orchestrator, _ = _orchestrator(store, claude)

    answer = await orchestrator.respond(db, conversation, "hello")

    assert answer.provider == "claude"


@pytest.mark.asyncio
async def test_fallback_failure_reports_fallback_error(db, store, conversation, ai_configuration):
    ai_configuration.fallback_provider = "claude"
    orchestrator, _ = _orchestrator(
        store,
        ScriptedAdapter("openai", [AiResponse.failure("first")]),
        ScriptedAdapter("claude", [AiResponse.failure("second")]),
    )
    result = await orchestrator.respond(db, conversation, "hello")
    assert result.kind is AiErrorKind.PROVIDER_ERROR
    assert result.provider == "claude"
    assert result.message == "second"


# ── Products and appointments ───────────────────────────────────────


@pytest.mark.asyncio
async def test_products_only_with_purchase_intent(db, store, company, conversation, ai_configuration):
    db.add(Product(company_id=company.id, name="Trail Tent", price=350, description="Two person tent"))
    await db.flush()
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai, embedder=FakeEmbedder(fail=True))

    await orchestrator.respond(db, conversation, "good morning")
    await orchestrator.respond(db, conversation, "what is the price of the tent")

    assert "# Available Products" not in openai.calls[0]["context"].system
    assert "Trail Tent" in openai.calls[1]["context"].system
    assert await store.get(f"company_has_products:{company.id}") == "1"


@pytest.mark.asyncio
async def test_product_search_can_be_disabled_per_turn(db, store, company, conversation, ai_configuration):
    db.add(Product(company_id=company.id, name="Trail Tent", price=350))
    await db.flush()
    openai = ScriptedAdapter("openai")
    orchestrator, _ = _orchestrator(store, openai, embedder=FakeEmbedder(fail=True))

    await orchestrator.respond(db, conversation, "price of tent", options={"enable_product_search": False})

    assert "Trail Tent" not in openai.calls[0]["context"].system


@pytest.mark.asyncio
async def test_appointment_block_when_calendar_bookable(db, store, company, conversation, ai_configuration):
    db.add(CalendarConfiguration(company_id=company.id, is_connected=True, is_enabled=True, timezone="UTC"))
    await db.flush()
    openai = ScriptedAdapter("openai", [AiResponse.success(
        "Booked! [BOOK_APPOINTMENT: date=2026-03-10, time=10:00]", "gpt-4o"
    )])
    orchestrator, _ = _orchestrator(store, openai)

    answer = await orchestrator.respond(db, conversation, "can I book a visit")

    assert "# APPOINTMENT BOOKING" in openai.calls[0]["context"].system
    assert answer.text == "Booked!"
    assert answer.appointment_request.date == "2026-03-10"


# ── Helpers ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_generate_simple_response(db, store, company, ai_configuration):
    openai = ScriptedAdapter("openai", [AiResponse.success("Summary", "gpt-4o")])
    orchestrator, limiter = _orchestrator(store, openai)

    answer = await orchestrator.generate_simple_response(db, company.id, "Summarize", "text")

    assert answer.text == "Summary"
    assert (await limiter.get_usage("openai", "gpt-4o"))["current"] == 1


def test_should_auto_respond_thresholds():
    configuration = AiConfiguration(primary_provider="openai", auto_respond=True, confidence_threshold=0.7)
    answer = AiAnswer(text="hi", provider="openai", model="m")
    assert AiOrchestrator.should_auto_respond(answer, configuration)
    answer.confidence = 0.5
    assert not AiOrchestrator.should_auto_respond(answer, configuration)
    answer.confidence = 0.9
    assert AiOrchestrator.should_auto_respond(answer, configuration)
    configuration.auto_respond = False
    assert not AiOrchestrator.should_auto_respond(answer, configuration)
    assert not AiOrchestrator.should_auto_respond(answer, None)
