"""Tests for the in-process key-value store's atomic operations."""

from __future__ import annotations

import asyncio
import time

import pytest

from replyflow.services.kv_store import InMemoryKeyValueStore, RedisKeyValueStore, create_store


@pytest.mark.asyncio
async def test_set_if_absent_only_first_caller_wins(store):
    results = await asyncio.gather(*(store.set_if_absent("lock", f"t{i}", 30) for i in range(5)))
    assert results.count(True) == 1
    assert await store.get("lock") == f"t{results.index(True)}"


@pytest.mark.asyncio
async def test_compare_and_delete_requires_matching_value(store):
    await store.set("marker", "abc", 60)
    assert await store.compare_and_delete("marker", "other") is False
    assert await store.get("marker") == "abc"
    assert await store.compare_and_delete("marker", "abc") is True
    assert await store.get("marker") is None


@pytest.mark.asyncio
async def test_expired_keys_read_as_missing(store):
    await store.set("k", "v", 10)
    store._data["k"] = ("v", time.monotonic() - 1)
    assert await store.get("k") is None
    assert await store.set_if_absent("k", "w", 10) is True


@pytest.mark.asyncio
async def test_incr_counts_and_keeps_original_expiry(store):
    assert await store.incr("counter", 100) == 1
    deadline = store._data["counter"][1]
    assert await store.incr("counter", 5) == 2
    assert store._data["counter"][1] == deadline


def test_create_store_picks_backend_from_url():
    assert isinstance(create_store(""), InMemoryKeyValueStore)
    assert isinstance(create_store("redis://localhost:6379/0"), RedisKeyValueStore)
