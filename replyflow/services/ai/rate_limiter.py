"""Per-provider, per-model daily request ceilings.

Counters live in the key-value store under
``rate_limit:{provider}:{model}:{YYYY-MM-DD}`` and expire at the end of
the UTC day. Only successful calls are counted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

from replyflow.services.kv_store import KeyValueStore

logger = logging.getLogger("ai.rate_limiter")

UNKNOWN_MODEL_LIMIT = 100

DEFAULT_LIMITS: dict[str, dict[str, int]] = {
    "gemini": {
        "gemini-2.5-flash-lite": 500,
        "gemini-2.5-flash": 500,
        "gemini-2.0-flash": 1500,
        "gemini-2.0-flash-exp": 1500,
        "gemini-1.5-flash": 1500,
        "gemini-1.5-pro": 50,
        "gemini-pro": 1500,
    },
    "openai": {
        "gpt-4o": 10000,
        "gpt-4o-mini": 10000,
        "gpt-4-turbo": 10000,
        "gpt-3.5-turbo": 10000,
    },
    "claude": {
        "claude-3-5-sonnet": 1000,
        "claude-3-5-haiku": 1000,
        "claude-3-opus": 1000,
        "claude-3-sonnet": 1000,
        "claude-3-haiku": 1000,
    },
}

DEFAULT_ALTERNATIVES: dict[str, dict[str, list[str]]] = {
    "gemini": {
        "gemini-2.5-flash-lite": ["gemini-2.0-flash", "gemini-1.5-flash"],
        "gemini-2.5-flash": ["gemini-2.0-flash", "gemini-1.5-flash"],
        "gemini-1.5-pro": ["gemini-1.5-flash", "gemini-2.0-flash"],
    },
}


@dataclass(frozen=True)
class RateLimitTable:
    """Immutable lookup of daily ceilings and alternative models."""
    limits: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    alternatives: Mapping[str, Mapping[str, tuple[str, ...]]] = field(default_factory=dict)
    default_limit: int = UNKNOWN_MODEL_LIMIT

    @classmethod
    def build(
        cls,
        limits: dict[str, dict[str, int]],
        alternatives: dict[str, dict[str, list[str]]],
        default_limit: int = UNKNOWN_MODEL_LIMIT,
    ) -> "RateLimitTable":
        return cls(
            limits=MappingProxyType({p: MappingProxyType(dict(m)) for p, m in limits.items()}),
            alternatives=MappingProxyType({
                p: MappingProxyType({m: tuple(alts) for m, alts in models.items()})
                for p, models in alternatives.items()
            }),
            default_limit=default_limit,
        )

    @classmethod
    def default(cls) -> "RateLimitTable":
        return cls.build(DEFAULT_LIMITS, DEFAULT_ALTERNATIVES)

    @classmethod
    def load(cls, path: str = "") -> "RateLimitTable":
        """Built-in tables, with provider entries overridden from a JSON file.

        File shape: {"limits": {provider: {model: n}}, "alternatives":
        {provider: {model: [alt, ...]}}, "default_limit": n}
        """
        if not path:
            return cls.default()
        data: dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
        limits = {p: dict(m) for p, m in DEFAULT_LIMITS.items()}
        for provider, models in (data.get("limits") or {}).items():
            limits.setdefault(provider, {}).update(models)
        alternatives = {p: dict(m) for p, m in DEFAULT_ALTERNATIVES.items()}
        for provider, models in (data.get("alternatives") or {}).items():
            alternatives.setdefault(provider, {}).update(models)
        logger.info("📊 Rate-limit table loaded from %s", path)
        return cls.build(limits, alternatives, int(data.get("default_limit", UNKNOWN_MODEL_LIMIT)))

    def limit_for(self, provider: str, model: str) -> int:
        return self.limits.get(provider, {}).get(model, self.default_limit)

    def alternatives_for(self, provider: str, model: str) -> tuple[str, ...]:
        return self.alternatives.get(provider, {}).get(model, ())

    def models_for(self, provider: str) -> list[str]:
        return list(self.limits.get(provider, {}))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    def __init__(
        self,
        store: KeyValueStore,
        table: RateLimitTable | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._table = table or RateLimitTable.default()
        self._clock = clock

    @property
    def table(self) -> RateLimitTable:
        return self._table

    def _key(self, provider: str, model: str) -> str:
        return f"rate_limit:{provider}:{model}:{self._clock().strftime('%Y-%m-%d')}"

    def _end_of_day(self) -> datetime:
        now = self._clock()
        return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc) - timedelta(microseconds=1)

    async def _current(self, provider: str, model: str) -> int:
        raw = await self._store.get(self._key(provider, model))
        return int(raw) if raw else 0

    async def can_make_request(self, provider: str, model: str) -> bool:
        return await self._current(provider, model) < self._table.limit_for(provider, model)

    async def record_request(self, provider: str, model: str) -> int:
        ttl = max(1, int((self._end_of_day() - self._clock()).total_seconds()) + 1)
        count = await self._store.incr(self._key(provider, model), ttl)
        logger.debug(
            "AI request recorded %s/%s: %d/%d",
            provider, model, count, self._table.limit_for(provider, model),
        )
        return count

    async def get_alternative_model(self, provider: str, model: str) -> str | None:
        """First configured alternative that still has quota today."""
        for alternative in self._table.alternatives_for(provider, model):
            if await self.can_make_request(provider, alternative):
                return alternative
        return None

    async def get_usage(self, provider: str, model: str) -> dict[str, Any]:
        current = await self._current(provider, model)
        limit = self._table.limit_for(provider, model)
        return {
            "current": current,
            "limit": limit,
            "remaining": max(0, limit - current),
            "percentage": round(current / limit * 100, 1) if limit > 0 else 0,
            "resets_at": self._end_of_day().isoformat(),
        }

    async def get_all_usage(self, provider: str) -> dict[str, dict[str, Any]]:
        return {
            model: await self.get_usage(provider, model)
            for model in self._table.models_for(provider)
        }
