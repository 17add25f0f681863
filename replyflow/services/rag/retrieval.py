"""Knowledge-base retrieval for prompt context.

Search order for one query:

1. Embed the query. If that fails, keyword search over raw entries.
2. Cosine similarity against every stored chunk vector of the company's
   active knowledge bases (optionally scoped), best ``top_k`` first.
3. If nothing is indexed yet, the full active knowledge-base content,
   bounded by ``full_content_limit`` entries.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import KnowledgeBase, KnowledgeChunk
from replyflow.services.rag.embedder import Embedder, EmbeddingError

logger = logging.getLogger("rag.retrieval")

MIN_KEYWORD_LENGTH = 3


@dataclass
class KnowledgeSnippet:
    text: str
    title: str
    category: str | None = None
    knowledge_base_id: uuid.UUID | None = None
    similarity: float | None = None  # None → keyword or full-content fallback


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty, zero-norm or mismatched input."""
    if not a or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class RetrievalService:
    def __init__(self, embedder: Embedder, full_content_limit: int = 10) -> None:
        self._embedder = embedder
        self._full_content_limit = full_content_limit

    async def get_context(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        query: str,
        top_k: int = 3,
        kb_scope: Sequence[uuid.UUID] | None = None,
        degraded: list[str] | None = None,
    ) -> list[KnowledgeSnippet]:
        try:
            query_vector = await self._embedder.embed_query(query)
        except EmbeddingError as exc:
            logger.warning("RAG: query embedding failed (%s) — falling back to keyword search", exc)
            if degraded is not None:
                degraded.append("retrieval_failure")
            return await self.keyword_search(db, company_id, query, top_k, kb_scope)

        snippets = await self.vector_search(db, company_id, query_vector, top_k, kb_scope)
        if not snippets:
            logger.info("RAG: no embeddings found — using full knowledge-base content")
            return await self.full_content(db, company_id, kb_scope)

        logger.info("RAG: %d relevant chunks (scoped=%s)", len(snippets), kb_scope is not None)
        return snippets

    @staticmethod
    def _base_query(company_id: uuid.UUID, kb_scope: Sequence[uuid.UUID] | None):
        stmt = select(KnowledgeBase).where(
            KnowledgeBase.company_id == company_id,
            KnowledgeBase.is_active.is_(True),
        )
        if kb_scope is not None:
            stmt = stmt.where(KnowledgeBase.id.in_(list(kb_scope)))
        return stmt

    async def vector_search(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        query_vector: Sequence[float],
        top_k: int,
        kb_scope: Sequence[uuid.UUID] | None = None,
    ) -> list[KnowledgeSnippet]:
        stmt = (
            select(KnowledgeChunk, KnowledgeBase)
            .join(KnowledgeBase, KnowledgeChunk.knowledge_base_id == KnowledgeBase.id)
            .where(
                KnowledgeBase.company_id == company_id,
                KnowledgeBase.is_active.is_(True),
                KnowledgeChunk.embedding.is_not(None),
            )
        )
        if kb_scope is not None:
            stmt = stmt.where(KnowledgeBase.id.in_(list(kb_scope)))

        scored: list[KnowledgeSnippet] = []
        for chunk, kb in (await db.execute(stmt)).all():
            if not chunk.embedding:
                continue
            scored.append(KnowledgeSnippet(
                text=chunk.content,
                title=kb.title or "Unknown",
                category=kb.category,
                knowledge_base_id=kb.id,
                similarity=cosine_similarity(query_vector, chunk.embedding),
            ))

        scored.sort(key=lambda s: s.similarity or 0.0, reverse=True)
        return scored[:top_k]

    async def keyword_search(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        query: str,
        limit: int,
        kb_scope: Sequence[uuid.UUID] | None = None,
    ) -> list[KnowledgeSnippet]:
        keywords = [w for w in query.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]
        stmt = self._base_query(company_id, kb_scope)
        if keywords:
            clauses = []
            for word in keywords:
                clauses.append(KnowledgeBase.content.ilike(f"%{word}%"))
                clauses.append(KnowledgeBase.title.ilike(f"%{word}%"))
            stmt = stmt.where(or_(*clauses))
        stmt = stmt.order_by(KnowledgeBase.priority.desc()).limit(limit)

        rows = (await db.execute(stmt)).scalars().all()
        return [self._whole_entry(kb) for kb in rows]

    async def full_content(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        kb_scope: Sequence[uuid.UUID] | None = None,
    ) -> list[KnowledgeSnippet]:
        stmt = (
            self._base_query(company_id, kb_scope)
            .order_by(KnowledgeBase.priority.desc())
            .limit(self._full_content_limit)
        )
        rows = (await db.execute(stmt)).scalars().all()
        return [self._whole_entry(kb) for kb in rows]

    @staticmethod
    def _whole_entry(kb: KnowledgeBase) -> KnowledgeSnippet:
        return KnowledgeSnippet(
            text=kb.content or "",
            title=kb.title,
            category=kb.category,
            knowledge_base_id=kb.id,
            similarity=None,
        )
