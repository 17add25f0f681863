"""FastAPI application — omnichannel AI reply service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from replyflow.config import settings
from replyflow.db.session import async_session_factory, engine
from replyflow.deps import build_services
from replyflow.models.base import Base

# Import all models so they're registered with Base.metadata
import replyflow.models  # noqa: F401

from replyflow.api.indexing import router as indexing_router
from replyflow.api.inbound import router as inbound_router
from replyflow.api.usage import router as usage_router

# ── Logging ─────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("replyflow")


# ── Lifespan ────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting replyflow on port %s", settings.port)

    # Create all tables (dev convenience; use migrations in production)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables ensured")

    services = build_services(settings, async_session_factory)
    app.state.services = services
    if not settings.redis_url:
        logger.info("ℹ️  No REDIS_URL set — using the in-process store (single worker only)")

    yield

    await services.coalescer.drain(settings.shutdown_drain_seconds)
    await services.store.close()
    await engine.dispose()
    logger.info("👋 Shutting down")


# ── App ─────────────────────────────────────────────────────────────

app = FastAPI(
    title="replyflow AI Reply API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(inbound_router)
app.include_router(usage_router)
app.include_router(indexing_router)


# ── Health ──────────────────────────────────────────────────────────


@app.get("/")
async def health():
    return {"status": "ok", "service": "replyflow"}
