"""Content-addressed cache of clean AI answers, scoped per conversation."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Iterable

from replyflow.services.ai.response import AiAnswer
from replyflow.services.kv_store import KeyValueStore

logger = logging.getLogger("ai.response_cache")

_WHITESPACE_RE = re.compile(r"\s+")
# \w keeps underscores, which are punctuation here
_PUNCT_RE = re.compile(r"[^\w\s]|_")


def normalize_message(message: str) -> str:
    """Lowercase, collapse whitespace, keep only letters/digits/spaces (any script)."""
    message = _WHITESPACE_RE.sub(" ", message.strip().lower())
    return _PUNCT_RE.sub("", message)


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def cache_key(
    company_id: uuid.UUID | str,
    message: str,
    knowledge_ids: Iterable[object] = (),
    conversation_id: uuid.UUID | str | None = None,
) -> str:
    knowledge_hash = _md5(",".join(str(k) for k in knowledge_ids))
    suffix = f":{conversation_id}" if conversation_id else ""
    return f"ai_response:{company_id}:{_md5(normalize_message(message) + knowledge_hash)}{suffix}"


class ResponseCache:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = 3600) -> None:
        self._store = store
        self._ttl = ttl_seconds

    async def get(
        self,
        company_id: uuid.UUID,
        message: str,
        knowledge_ids: Iterable[object] = (),
        conversation_id: uuid.UUID | None = None,
    ) -> AiAnswer | None:
        key = cache_key(company_id, message, knowledge_ids, conversation_id)
        raw = await self._store.get(key)
        if not raw:
            return None
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt cache entry %s — ignoring", key)
            return None
        logger.info("♻️ Response cache HIT %s", key)
        return AiAnswer(
            text=entry.get("text", ""),
            raw_text=entry.get("text", ""),
            images=list(entry.get("images") or []),
            provider=entry.get("provider", ""),
            model=f"{entry.get('model', '')} (cached)",
            usage={"cached": True, "original_tokens": entry.get("tokens", 0)},
            cached=True,
        )

    async def put(
        self,
        company_id: uuid.UUID,
        message: str,
        answer: AiAnswer,
        knowledge_ids: Iterable[object] = (),
        conversation_id: uuid.UUID | None = None,
    ) -> None:
        key = cache_key(company_id, message, knowledge_ids, conversation_id)
        entry = {
            "text": answer.text,
            "images": answer.images,
            "model": answer.model,
            "provider": answer.provider,
            "tokens": answer.usage.get("total_tokens", 0),
            "cached_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._store.set(key, json.dumps(entry, ensure_ascii=False), self._ttl)
        logger.info("Response cached %s", key)
