"""Tests for knowledge retrieval and re-indexing."""

from __future__ import annotations

import pytest

from replyflow.models import KnowledgeBase, KnowledgeChunk
from replyflow.services.rag.ingestion import reindex_knowledge_base
from replyflow.services.rag.retrieval import RetrievalService, cosine_similarity
from tests.fakes import FakeEmbedder


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0


async def _kb(db, company, title, content, *, priority=0, active=True) -> KnowledgeBase:
    kb = KnowledgeBase(company_id=company.id, title=title, content=content, priority=priority, is_active=active)
    db.add(kb)
    await db.flush()
    return kb


@pytest.mark.asyncio
async def test_vector_search_ranks_by_similarity(db, company):
    shipping = await _kb(db, company, "Shipping", "We ship nationwide.")
    returns = await _kb(db, company, "Returns", "Returns within 30 days.")
    db.add_all([
        KnowledgeChunk(knowledge_base_id=shipping.id, chunk_index=0, content="We ship nationwide.", embedding=[1.0, 0.0]),
        KnowledgeChunk(knowledge_base_id=returns.id, chunk_index=0, content="Returns within 30 days.", embedding=[0.6, 0.8]),
    ])
    await db.flush()

    service = RetrievalService(FakeEmbedder(default=[1.0, 0.0]))
    snippets = await service.get_context(db, company.id, "do you ship?", top_k=2)

    assert [s.title for s in snippets] == ["Shipping", "Returns"]
    assert snippets[0].similarity == pytest.approx(1.0)
    assert snippets[1].similarity == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_scope_limits_knowledge_bases(db, company):
    a = await _kb(db, company, "A", "alpha")
    b = await _kb(db, company, "B", "beta")
    db.add_all([
        KnowledgeChunk(knowledge_base_id=a.id, chunk_index=0, content="alpha", embedding=[1.0, 0.0]),
        KnowledgeChunk(knowledge_base_id=b.id, chunk_index=0, content="beta", embedding=[1.0, 0.0]),
    ])
    await db.flush()

    snippets = await RetrievalService(FakeEmbedder(default=[1.0, 0.0])).get_context(
        db, company.id, "anything", top_k=5, kb_scope=[b.id]
    )
    assert [s.title for s in snippets] == ["B"]


@pytest.mark.asyncio
async def test_unindexed_company_gets_full_content(db, company):
    await _kb(db, company, "Low", "low priority", priority=1)
    await _kb(db, company, "High", "high priority", priority=5)
    await _kb(db, company, "Hidden", "inactive", active=False)

    snippets = await RetrievalService(FakeEmbedder()).get_context(db, company.id, "hours?")

    assert [s.title for s in snippets] == ["High", "Low"]
    assert all(s.similarity is None for s in snippets)


@pytest.mark.asyncio
async def test_embedding_failure_falls_back_to_keywords(db, company):
    await _kb(db, company, "Delivery", "Delivery takes three days.")
    await _kb(db, company, "Warranty", "Two year warranty.")
    degraded: list[str] = []

    snippets = await RetrievalService(FakeEmbedder(fail=True)).get_context(
        db, company.id, "how long is delivery", degraded=degraded
    )

    assert [s.title for s in snippets] == ["Delivery"]
    assert degraded == ["retrieval_failure"]


@pytest.mark.asyncio
async def test_reindex_replaces_chunks_and_keeps_text_without_vectors(db, company):
    kb = await _kb(db, company, "FAQ", "First answer.\n\nSecond answer.")
    db.add(KnowledgeChunk(knowledge_base_id=kb.id, chunk_index=0, content="stale", embedding=[0.0, 1.0]))
    await db.flush()

    stats = await reindex_knowledge_base(db, kb, FakeEmbedder(fail=True), max_chars=15)

    assert stats["chunk_count"] == 2
    assert stats["embedded_count"] == 0
    assert kb.indexed_at is not None
    rows = (await db.execute(
        KnowledgeChunk.__table__.select().where(KnowledgeChunk.knowledge_base_id == kb.id)
    )).all()
    assert sorted(r.content for r in rows) == ["First answer.", "Second answer."]
    assert all(r.embedding is None for r in rows)
