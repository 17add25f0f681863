"""AI orchestrator — turns one customer turn into an AI answer.

respond() resolves the configuration, gathers context (history, media,
knowledge, products, appointment availability), builds the system
prompt, consults the response cache, calls the provider behind the
rate-limit gate with a single fallback attempt, and post-processes the
output into clean text plus images to send.

Expected failures come back as AiError values; nothing here raises for
a provider or retrieval fault.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.config import Settings, settings as default_settings
from replyflow.models import AiConfiguration, Company, Conversation, Customer, Message
from replyflow.models.base import utcnow
from replyflow.services.ai.config import ResolvedAiConfig, TurnOptions, load_company_default, resolve_ai_config
from replyflow.services.ai.media_context import (
    ImageFetcher,
    MediaContext,
    enhance_message,
    load_media_context,
    recent_customer_images,
    update_customer_language,
)
from replyflow.services.ai.post_processing import process_output
from replyflow.services.ai.prompt_builder import PromptInputs, build_appointment_block, build_system_prompt
from replyflow.services.ai.prompts import PromptPolicy
from replyflow.services.ai.providers.base import HistoryTurn, ProviderAdapter, ProviderContext
from replyflow.services.ai.providers.registry import ProviderRegistry
from replyflow.services.ai.rate_limiter import RateLimiter
from replyflow.services.ai.response import AiAnswer, AiError, AiErrorKind, AiResponse, AiResult
from replyflow.services.ai.response_cache import ResponseCache
from replyflow.services.appointments import AppointmentService
from replyflow.services.kv_store import KeyValueStore
from replyflow.services.products.retrieval import ProductMatch, ProductRetrievalService, extract_filters_from_query
from replyflow.services.rag.retrieval import KnowledgeSnippet, RetrievalService

logger = logging.getLogger("ai.orchestrator")

HAS_PRODUCTS_TTL = 300
PRODUCT_HISTORY_MESSAGES = 3
SHORT_QUERY_CONTEXT_MESSAGES = 4
AVAILABILITY_DAYS = 7

_ROLES = {"customer": "user", "agent": "assistant", "ai": "assistant"}


class AiOrchestrator:
    def __init__(
        self,
        *,
        providers: ProviderRegistry,
        retrieval: RetrievalService,
        products: ProductRetrievalService,
        rate_limiter: RateLimiter,
        cache: ResponseCache,
        store: KeyValueStore,
        image_fetcher: ImageFetcher | None = None,
        policy: PromptPolicy | None = None,
        settings: Settings = default_settings,
        clock: Callable = utcnow,
    ) -> None:
        self._providers = providers
        self._retrieval = retrieval
        self._products = products
        self._rate_limiter = rate_limiter
        self._cache = cache
        self._store = store
        self._image_fetcher = image_fetcher or ImageFetcher()
        self._policy = policy or PromptPolicy()
        self._settings = settings
        self._clock = clock

    # ── Public API ──────────────────────────────────────────────

    async def respond(
        self,
        db: AsyncSession,
        conversation: Conversation,
        text: str,
        triggering_message: Message | None = None,
        options: TurnOptions | dict[str, Any] | None = None,
    ) -> AiResult:
        if not isinstance(options, TurnOptions):
            options = TurnOptions.from_dict(options)
        degraded: list[str] = []

        # ── Step 1: Configuration ──
        config = await resolve_ai_config(db, conversation.company_id, options, degraded)
        if isinstance(config, AiError):
            logger.info("⏭️ No AI reply for conversation %s: %s", conversation.id, config.message)
            return config

        company = await db.get(Company, conversation.company_id)
        customer = await db.get(Customer, conversation.customer_id)

        # ── Step 2: Conversation, image and media context ──
        history = await self._history(db, conversation)

        images, failed_downloads = await recent_customer_images(
            db,
            conversation,
            self._image_fetcher,
            window_minutes=self._settings.recent_image_window_minutes,
            limit=self._settings.recent_image_limit,
            now=self._clock(),
        )
        if failed_downloads:
            degraded.append("image_download_failure")

        media = await load_media_context(db, triggering_message)
        if media:
            if media.audio_language:
                await update_customer_language(db, conversation, media.audio_language)
            text = enhance_message(text, media)

        # ── Step 3: Knowledge ──
        search_query = (media.product_image_query if media else None) or text
        knowledge = await self._knowledge(db, conversation.company_id, search_query, config, degraded)

        # ── Step 4: Products ──
        products = await self._product_context(db, conversation, text, media, config, degraded)

        # ── Step 5: Prompt ──
        appointment_block = await self._appointment_block(db, conversation.company_id)
        system_prompt = build_system_prompt(PromptInputs(
            company=company,
            config=config,
            customer=customer,
            knowledge=knowledge,
            products=products,
            appointment_block=appointment_block,
            media=media,
            policy=self._policy,
        ))
        logger.debug("System prompt (%d chars) for conversation %s", len(system_prompt), conversation.id)

        # ── Step 6: Cache ──
        has_media = bool(media) or bool(images)
        knowledge_ids = [s.knowledge_base_id for s in knowledge if s.knowledge_base_id is not None]
        if not has_media:
            cached = await self._cache.get(conversation.company_id, text, knowledge_ids, conversation.id)
            if cached is not None:
                return self._stamp(cached, config, degraded)

        # ── Step 7–8: Provider call with fallback ──
        context = ProviderContext(system=system_prompt, history=history, images=images)
        outcome = await self._call_with_fallback(db, conversation.company_id, config, text, context)
        if isinstance(outcome, AiError):
            return outcome
        response, provider_used = outcome

        # ── Step 9: Post-processing ──
        processed = process_output(response.content, self._settings.max_extracted_images)
        answer = self._stamp(
            AiAnswer(
                text=processed.text,
                provider=provider_used,
                model=response.model,
                raw_text=response.content,
                images=processed.images,
                confidence=response.confidence,
                usage=response.usage,
                appointment_request=processed.appointment_request,
            ),
            config,
            degraded,
        )

        # ── Step 10: Cache write ──
        if not has_media:
            await self._cache.put(conversation.company_id, text, answer, knowledge_ids, conversation.id)

        logger.info(
            "✅ AI answer for conversation %s via %s/%s (%d chars, %d images)",
            conversation.id, provider_used, answer.model, len(answer.text), len(answer.images),
        )
        return answer

    async def generate_simple_response(
        self, db: AsyncSession, company_id: uuid.UUID, system_prompt: str, user_text: str
    ) -> AiResult:
        """One-shot generation with the company default, no conversation context."""
        configuration = await load_company_default(db, company_id)
        if configuration is None:
            return AiError(AiErrorKind.NOT_CONFIGURED, "AI is not configured for this company")
        try:
            adapter = self._providers.get(configuration.primary_provider)
        except ValueError as exc:
            return AiError(AiErrorKind.PROVIDER_ERROR, str(exc), provider=configuration.primary_provider)

        model = await self._gate(adapter, configuration.primary_provider, configuration.primary_model)
        if isinstance(model, AiError):
            return model
        response = await adapter.generate_response(system_prompt, user_text, {
            "model": model,
            "max_tokens": configuration.max_tokens,
            "temperature": configuration.temperature,
        })
        if not response.successful:
            return AiError(
                AiErrorKind.PROVIDER_ERROR, response.error or "Provider call failed",
                provider=configuration.primary_provider, model=response.model,
            )
        await self._rate_limiter.record_request(
            configuration.primary_provider,
            self._counted_model(configuration.primary_provider, model or adapter.default_model, response),
        )
        return AiAnswer(
            text=response.content,
            provider=configuration.primary_provider,
            model=response.model,
            raw_text=response.content,
            confidence=response.confidence,
            usage=response.usage,
        )

    @staticmethod
    def should_auto_respond(answer: AiResult, configuration: AiConfiguration | None) -> bool:
        """True when auto-respond is on and confidence is unknown or above the threshold."""
        if configuration is None or not configuration.auto_respond or not answer.ok:
            return False
        if answer.confidence is None:
            return True
        threshold = configuration.confidence_threshold if configuration.confidence_threshold is not None else 0.7
        return answer.confidence >= threshold

    # ── Context ─────────────────────────────────────────────────

    async def _history(self, db: AsyncSession, conversation: Conversation) -> list[HistoryTurn]:
        result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc())
            .limit(self._settings.history_window)
        )
        turns = []
        for message in reversed(result.scalars().all()):
            role = _ROLES.get(message.sender_type)
            if role and message.content:
                turns.append(HistoryTurn(role=role, content=message.content))
        return turns

    async def _recent_texts(self, db: AsyncSession, conversation: Conversation, limit: int) -> list[str]:
        """Contents of the last ``limit`` messages, oldest first."""
        result = await db.execute(
            select(Message.content)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return [content for content in reversed(result.scalars().all()) if content]

    async def _knowledge(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        query: str,
        config: ResolvedAiConfig,
        degraded: list[str],
    ) -> list[KnowledgeSnippet]:
        try:
            snippets = await self._retrieval.get_context(
                db, company_id, query, config.rag_top_k, config.kb_scope, degraded
            )
        except SQLAlchemyError:
            logger.exception("Knowledge retrieval failed for company %s — continuing without it", company_id)
            degraded.append("retrieval_failure")
            return []

        threshold = self._settings.rag_similarity_threshold
        kept = [s for s in snippets if s.similarity is None or s.similarity >= threshold]
        if len(kept) != len(snippets):
            logger.info("RAG: dropped %d chunks below similarity %.2f", len(snippets) - len(kept), threshold)
        return kept

    async def _has_products(self, db: AsyncSession, company_id: uuid.UUID) -> bool:
        key = f"company_has_products:{company_id}"
        memo = await self._store.get(key)
        if memo is not None:
            return memo == "1"
        has = await self._products.has_active_products(db, company_id)
        await self._store.set(key, "1" if has else "0", HAS_PRODUCTS_TTL)
        return has

    async def should_search_products(
        self, db: AsyncSession, conversation: Conversation, text: str, media: MediaContext | None
    ) -> bool:
        if not await self._has_products(db, conversation.company_id):
            return False
        if media and media.product_search:
            return True
        lowered = text.lower()
        if any(k.lower() in lowered for k in self._settings.product_intent_keywords):
            return True
        recent = " ".join(await self._recent_texts(db, conversation, PRODUCT_HISTORY_MESSAGES)).lower()
        return bool(recent) and any(k.lower() in recent for k in self._settings.product_history_keywords)

    async def _product_context(
        self,
        db: AsyncSession,
        conversation: Conversation,
        text: str,
        media: MediaContext | None,
        config: ResolvedAiConfig,
        degraded: list[str],
    ) -> list[ProductMatch]:
        if not config.product_search_enabled:
            logger.info("Product search skipped: disabled for this configuration")
            return []
        try:
            if not await self.should_search_products(db, conversation, text, media):
                logger.info("Product search skipped: no product intent")
                return []

            filters = extract_filters_from_query(text)
            query = (media.product_image_query if media else None) or text
            if len(query) < self._settings.short_query_chars:
                recent = " ".join(await self._recent_texts(db, conversation, SHORT_QUERY_CONTEXT_MESSAGES))
                if recent:
                    query = f"{recent} {query}"

            return await self._products.search(
                db, conversation.company_id, query, filters, self._settings.product_search_limit
            )
        except SQLAlchemyError:
            logger.exception("Product search failed for company %s — continuing without products", conversation.company_id)
            degraded.append("product_search_failure")
            return []

    async def _appointment_block(self, db: AsyncSession, company_id: uuid.UUID) -> str | None:
        service = await AppointmentService.for_company(db, company_id, self._clock)
        if service is None:
            return None
        try:
            availability = await service.format_dates_for_ai(AVAILABILITY_DAYS)
        except SQLAlchemyError as exc:
            logger.warning("Could not fetch appointment availability for %s: %s", company_id, exc)
            availability = None
        return build_appointment_block(self._policy, service.booking_context(), availability)

    # ── Provider calls ──────────────────────────────────────────

    async def _gate(self, adapter: ProviderAdapter, provider: str, model: str | None) -> str | None | AiError:
        """Model to call under today's quota, or RATE_LIMITED.

        Returns the requested model unchanged (possibly None, meaning the
        adapter default) when it has headroom.
        """
        checked = model or adapter.default_model
        if await self._rate_limiter.can_make_request(provider, checked):
            return model
        alternative = await self._rate_limiter.get_alternative_model(provider, checked)
        if alternative is not None:
            logger.warning("📊 %s/%s at daily limit — using %s", provider, checked, alternative)
            return alternative
        usage = await self._rate_limiter.get_usage(provider, checked)
        logger.warning("📊 %s/%s rate limited with no alternative: %s", provider, checked, usage)
        return AiError(
            AiErrorKind.RATE_LIMITED,
            f"Daily request limit reached for {provider}/{checked}",
            provider=provider,
            model=checked,
            usage=usage,
        )

    def _counted_model(self, provider: str, gated: str, response: AiResponse) -> str:
        """Model whose daily counter a successful call is charged to.

        An adapter may swap the model on its own (OpenAI picks its vision model
        when none was requested), so a known model reported back wins.
        """
        if response.model and response.model in self._rate_limiter.table.models_for(provider):
            return response.model
        return gated

    @staticmethod
    async def _send(adapter: ProviderAdapter, text: str, context: ProviderContext, options: dict[str, Any]) -> AiResponse:
        if context.images and adapter.supports_vision:
            return await adapter.send_message_with_vision(text, context, options)
        return await adapter.send_message(text, context, options)

    async def _call_with_fallback(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        config: ResolvedAiConfig,
        text: str,
        context: ProviderContext,
    ) -> tuple[AiResponse, str] | AiError:
        options = config.generation_options
        try:
            adapter = self._providers.get(config.provider)
        except ValueError as exc:
            logger.error("Primary provider unavailable: %s", exc)
            response = AiResponse.failure(str(exc), model=config.model or "")
        else:
            model = await self._gate(adapter, config.provider, config.model)
            if isinstance(model, AiError):
                return model
            response = await self._send(adapter, text, context, {**options, "model": model})
            if response.successful:
                await self._rate_limiter.record_request(
                    config.provider, self._counted_model(config.provider, model or adapter.default_model, response)
                )
                return response, config.provider

        logger.warning("Primary AI provider %s failed: %s", config.provider, response.error)
        primary_error = AiError(
            AiErrorKind.PROVIDER_ERROR,
            response.error or "Provider call failed",
            provider=config.provider,
            model=response.model or config.model,
        )

        company_default = await load_company_default(db, company_id)
        if company_default is None or not company_default.fallback_provider:
            return primary_error

        fallback_id = company_default.fallback_provider
        try:
            fallback = self._providers.get(fallback_id)
        except ValueError as exc:
            logger.error("Fallback provider unavailable: %s", exc)
            return primary_error

        logger.info("↪️ Trying fallback provider %s", fallback_id)
        response = await self._send(fallback, text, context, {**options, "model": company_default.fallback_model})
        if not response.successful:
            logger.error("❌ Fallback provider %s failed too: %s", fallback_id, response.error)
            return AiError(
                AiErrorKind.PROVIDER_ERROR,
                response.error or "Fallback provider call failed",
                provider=fallback_id,
                model=response.model,
            )
        await self._rate_limiter.record_request(
            fallback_id, self._counted_model(fallback_id, company_default.fallback_model or fallback.default_model, response)
        )
        return response, fallback_id

    @staticmethod
    def _stamp(answer: AiAnswer, config: ResolvedAiConfig, degraded: list[str]) -> AiAnswer:
        answer.personality_id = config.personality_id
        answer.personality_name = config.personality_name
        answer.agent_type = config.agent_type
        answer.degraded = list(degraded)
        return answer
