"""Tests for the HTTP routes, with the database and services swapped for test doubles."""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from replyflow.config import Settings
from replyflow.db.session import get_db
from replyflow.deps import build_services
from replyflow.main import app
from replyflow.models import KnowledgeBase
from replyflow.services.coalescer import ResponseCoalescer
from replyflow.services.dispatcher import Dispatcher
from tests.fakes import FakeEmbedder, RecordingSender


@pytest_asyncio.fixture
async def client(session_factory, store):
    async def override_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    settings = Settings(encryption_key="test")
    services = build_services(settings, session_factory, store)
    services.embedder = FakeEmbedder(default=[0.5, 0.5])
    jobs: list = []
    services.coalescer = ResponseCoalescer(
        store=store,
        orchestrator=services.orchestrator,
        dispatcher=Dispatcher(lambda c: RecordingSender()),
        session_factory=session_factory,
        settings=settings,
        scheduler=jobs.append,
    )
    app.dependency_overrides[get_db] = override_db
    app.state.services = services
    app.state.scheduled_jobs = jobs

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/")
    assert resp.json() == {"status": "ok", "service": "replyflow"}


@pytest.mark.asyncio
async def test_inbound_schedules_one_reply_per_new_message(client, db, connection):
    await db.commit()
    body = {
        "connection_id": str(connection.id),
        "customer_platform_id": "tg-77",
        "text": "do you sell tents?",
        "platform_message_id": "upd-1",
        "ai_options": {"rag_top_k": 5},
    }
    first = await client.post("/api/inbound/messages", json=body)
    again = await client.post("/api/inbound/messages", json=body)

    assert first.status_code == 202
    assert first.json()["scheduled"] is True
    assert first.json()["duplicate"] is False
    assert again.json()["duplicate"] is True
    assert again.json()["scheduled"] is False
    assert again.json()["message_id"] == first.json()["message_id"]

    [job] = app.state.scheduled_jobs
    assert job.options.rag_top_k == 5
    assert str(job.first_message_id) == first.json()["message_id"]


@pytest.mark.asyncio
async def test_inbound_unknown_connection(client):
    resp = await client.post("/api/inbound/messages", json={
        "connection_id": str(uuid.uuid4()), "customer_platform_id": "x", "text": "hi",
    })
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_inbound_validation_error(client):
    resp = await client.post("/api/inbound/messages", json={"customer_platform_id": "x"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_usage_for_known_and_unknown_provider(client, store):
    await app.state.services.rate_limiter.record_request("gemini", "gemini-2.0-flash")

    resp = await client.get("/api/ai/usage/gemini")
    assert resp.status_code == 200
    models = resp.json()["models"]
    assert models["gemini-2.0-flash"]["current"] == 1
    assert models["gemini-2.0-flash"]["limit"] == 1500

    assert (await client.get("/api/ai/usage/mistral")).status_code == 404


@pytest.mark.asyncio
async def test_reindex_knowledge_base(client, db, company):
    kb = KnowledgeBase(company_id=company.id, title="FAQ", content="One.\n\nTwo.")
    db.add(kb)
    await db.commit()

    resp = await client.post(f"/api/knowledge-bases/{kb.id}/reindex")

    assert resp.status_code == 200
    data = resp.json()
    assert data["knowledge_base_id"] == str(kb.id)
    assert data["chunk_count"] == 1
    assert data["embedded_count"] == 1


@pytest.mark.asyncio
async def test_reindex_missing_product(client):
    resp = await client.post(f"/api/products/{uuid.uuid4()}/reindex")
    assert resp.status_code == 404
