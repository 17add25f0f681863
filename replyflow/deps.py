"""Shared FastAPI dependencies and the process-wide service graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from replyflow.config import Settings
from replyflow.db.session import get_db
from replyflow.services.ai.orchestrator import AiOrchestrator
from replyflow.services.ai.prompts import PromptPolicy
from replyflow.services.ai.providers.registry import ProviderRegistry
from replyflow.services.ai.rate_limiter import RateLimiter, RateLimitTable
from replyflow.services.ai.response_cache import ResponseCache
from replyflow.services.coalescer import ResponseCoalescer
from replyflow.services.dispatcher import Dispatcher
from replyflow.services.kv_store import KeyValueStore, create_store
from replyflow.services.products.retrieval import ProductRetrievalService
from replyflow.services.rag.embedder import Embedder
from replyflow.services.rag.retrieval import RetrievalService

DBSession = Annotated[AsyncSession, Depends(get_db)]


@dataclass
class AppServices:
    store: KeyValueStore
    embedder: Embedder
    rate_limiter: RateLimiter
    orchestrator: AiOrchestrator
    coalescer: ResponseCoalescer


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    store: KeyValueStore | None = None,
) -> AppServices:
    store = store or create_store(settings.redis_url)
    embedder = Embedder(
        settings.openai_api_key,
        settings.embedding_model,
        timeout=settings.embedding_timeout_seconds,
    )
    rate_limiter = RateLimiter(store, RateLimitTable.load(settings.rate_limits_file))
    orchestrator = AiOrchestrator(
        providers=ProviderRegistry(settings),
        retrieval=RetrievalService(embedder, settings.rag_full_content_limit),
        products=ProductRetrievalService(
            embedder,
            public_base_url=settings.public_base_url,
            similarity_threshold=settings.product_similarity_threshold,
        ),
        rate_limiter=rate_limiter,
        cache=ResponseCache(store, settings.response_cache_ttl_seconds),
        store=store,
        policy=PromptPolicy.load(settings.prompt_policy_file),
        settings=settings,
    )
    coalescer = ResponseCoalescer(
        store=store,
        orchestrator=orchestrator,
        dispatcher=Dispatcher(),
        session_factory=session_factory,
        settings=settings,
    )
    return AppServices(
        store=store,
        embedder=embedder,
        rate_limiter=rate_limiter,
        orchestrator=orchestrator,
        coalescer=coalescer,
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


Services = Annotated[AppServices, Depends(get_services)]
