"""Knowledge-base indexing: chunk → embed → store chunk rows."""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import KnowledgeBase, KnowledgeChunk
from replyflow.models.base import utcnow
from replyflow.services.rag.chunker import chunk_text
from replyflow.services.rag.embedder import Embedder, EmbeddingError

logger = logging.getLogger("rag.ingestion")


async def reindex_knowledge_base(
    db: AsyncSession,
    kb: KnowledgeBase,
    embedder: Embedder,
    max_chars: int | None = None,
) -> dict[str, Any]:
    """Replace every chunk of one knowledge base.

    Chunks are stored even when embedding fails, without a vector, so
    keyword and full-content fallback still see the content.

    Returns an indexing trace with stats.
    """
    start = time.time()

    await db.execute(delete(KnowledgeChunk).where(KnowledgeChunk.knowledge_base_id == kb.id))

    chunks = chunk_text(kb.content or "", max_chars)
    if not chunks:
        logger.warning("Knowledge base %s has no content to index", kb.id)
        kb.indexed_at = utcnow()
        await db.flush()
        return {"chunk_count": 0, "embedded_count": 0, "total_time_ms": int((time.time() - start) * 1000)}

    try:
        vectors: list[list[float] | None] = list(await embedder.embed_texts([c.text for c in chunks]))
    except EmbeddingError as exc:
        logger.warning("Embedding failed for knowledge base %s: %s — storing chunks without vectors", kb.id, exc)
        vectors = [None] * len(chunks)

    for chunk, vector in zip(chunks, vectors):
        db.add(KnowledgeChunk(
            knowledge_base_id=kb.id,
            chunk_index=chunk.chunk_index,
            content=chunk.text,
            embedding=vector,
        ))
    kb.indexed_at = utcnow()
    await db.flush()

    embedded = sum(1 for v in vectors if v)
    logger.info("📚 Indexed knowledge base %s: %d chunks (%d embedded)", kb.title, len(chunks), embedded)
    return {
        "chunk_count": len(chunks),
        "embedded_count": embedded,
        "total_time_ms": int((time.time() - start) * 1000),
    }
