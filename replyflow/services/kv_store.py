"""Atomic key-value store for short-lived shared state.

Holds the coalescer's pending-job markers, per-conversation processing
locks, rate-limit counters and cached answers. Every operation the
coalescer relies on is atomic in both implementations:

* RedisKeyValueStore — redis.asyncio, safe across worker processes.
* InMemoryKeyValueStore — one process only; used in tests and local dev.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from redis.asyncio import Redis

logger = logging.getLogger("kv_store")

# KEYS[1] = key, ARGV[1] = expected value
_COMPARE_AND_DELETE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class KeyValueStore(ABC):
    """Async string store with TTLs and atomic compare operations."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Store value only when key is missing. True when this call stored it."""

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete key only if it currently holds expected. True when deleted."""

    @abstractmethod
    async def incr(self, key: str, ttl: int | None = None) -> int:
        """Atomically increment; ttl is applied when the key is created."""

    async def close(self) -> None:
        return None


# ── Redis ───────────────────────────────────────────────────────────


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: Redis) -> None:
        self._client = client
        self._cad = client.register_script(_COMPARE_AND_DELETE)

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        await self._client.set(key, value, ex=max(1, int(ttl)) if ttl else None)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(await self._client.set(key, value, ex=max(1, int(ttl)), nx=True))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        return bool(await self._cad(keys=[key], args=[expected]))

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.ttl(key)
            value, remaining = await pipe.execute()
        # -1: key exists without expiry, i.e. this call created it
        if ttl and remaining == -1:
            await self._client.expire(key, max(1, int(ttl)))
        return int(value)

    async def close(self) -> None:
        await self._client.aclose()


# ── In-memory ───────────────────────────────────────────────────────


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    @staticmethod
    def _deadline(ttl: int | None) -> float | None:
        return time.monotonic() + ttl if ttl else None

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            self._data[key] = (value, self._deadline(ttl))

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._deadline(ttl))
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        async with self._lock:
            if self._live(key) != expected:
                return False
            del self._data[key]
            return True

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._lock:
            current = self._live(key)
            if current is None:
                self._data[key] = ("1", self._deadline(ttl))
                return 1
            value = int(current) + 1
            self._data[key] = (str(value), self._data[key][1])
            return value


def create_store(redis_url: str) -> KeyValueStore:
    """Redis when a URL is configured, otherwise the in-process store."""
    if redis_url:
        logger.info("🔑 Key-value store: redis")
        return RedisKeyValueStore.from_url(redis_url)
    logger.warning("REDIS_URL not set — using in-process key-value store (single worker only)")
    return InMemoryKeyValueStore()
