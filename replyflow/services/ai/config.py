"""Resolve which AI configuration answers a turn.

A turn is answered either by an explicitly chosen personality or by the
company's default configuration. Both are flattened into one frozen
ResolvedAiConfig here, so nothing downstream has to know which source
won.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.config import settings
from replyflow.models import AiConfiguration, AiPersonality
from replyflow.services.ai.response import AiError, AiErrorKind

logger = logging.getLogger("ai.config")


@dataclass(frozen=True)
class TurnOptions:
    """Per-turn overrides supplied by the caller (usually a workflow step)."""
    personality_id: uuid.UUID | None = None
    enable_product_search: bool | None = None
    rag_top_k: int | None = None
    system_prompt: str | None = None
    additional_context: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TurnOptions":
        data = data or {}
        personality_id = data.get("personality_id")
        if personality_id is not None and not isinstance(personality_id, uuid.UUID):
            personality_id = uuid.UUID(str(personality_id))
        return cls(
            personality_id=personality_id,
            enable_product_search=data.get("enable_product_search"),
            rag_top_k=data.get("rag_top_k"),
            system_prompt=data.get("system_prompt"),
            additional_context=data.get("additional_context"),
        )


@dataclass(frozen=True)
class ResolvedAiConfig:
    provider: str
    model: str | None
    max_tokens: int = 1024
    temperature: float = 0.7
    system_prompt: str | None = None
    tone: str | None = None
    prohibited_topics: tuple[str, ...] = ()
    custom_instructions: tuple[str, ...] = ()
    product_search_enabled: bool = True
    rag_top_k: int = 3
    kb_scope: tuple[uuid.UUID, ...] | None = None  # None → every active knowledge base
    confidence_threshold: float = 0.7
    personality_id: uuid.UUID | None = None
    personality_name: str | None = None
    agent_type: str | None = None
    source: str = "company_default"  # company_default | personality
    extra_context: tuple[str, ...] = field(default=())

    @property
    def generation_options(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }


def _as_tuple(values: Any) -> tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values if v)


def _scope(ids: Any) -> tuple[uuid.UUID, ...] | None:
    if ids is None:
        return None
    return tuple(i if isinstance(i, uuid.UUID) else uuid.UUID(str(i)) for i in ids)


def from_personality(p: AiPersonality) -> ResolvedAiConfig:
    return ResolvedAiConfig(
        provider=p.provider,
        model=p.model,
        max_tokens=p.max_tokens or 1024,
        temperature=float(p.temperature if p.temperature is not None else 0.7),
        system_prompt=p.system_prompt,
        tone=p.personality_tone,
        prohibited_topics=_as_tuple(p.prohibited_topics),
        custom_instructions=_as_tuple(p.custom_instructions),
        product_search_enabled=bool(p.enable_product_search),
        rag_top_k=p.rag_top_k or settings.rag_default_top_k,
        kb_scope=_scope(p.knowledge_base_ids),
        confidence_threshold=float(p.confidence_threshold or 0.7),
        personality_id=p.id,
        personality_name=p.name,
        agent_type=p.agent_type,
        source="personality",
    )


def from_company_default(c: AiConfiguration) -> ResolvedAiConfig:
    return ResolvedAiConfig(
        provider=c.primary_provider,
        model=c.primary_model,
        max_tokens=c.max_tokens or 1024,
        temperature=float(c.temperature if c.temperature is not None else 0.7),
        system_prompt=c.system_prompt,
        tone=c.personality_tone,
        prohibited_topics=_as_tuple(c.prohibited_topics),
        custom_instructions=_as_tuple(c.custom_instructions),
        product_search_enabled=True,
        rag_top_k=settings.rag_default_top_k,
        kb_scope=None,
        confidence_threshold=float(c.confidence_threshold or 0.7),
    )


def apply_options(config: ResolvedAiConfig, options: TurnOptions) -> ResolvedAiConfig:
    """Caller overrides win over either configuration source."""
    changes: dict[str, Any] = {}
    if options.enable_product_search is not None:
        changes["product_search_enabled"] = bool(options.enable_product_search)
    if options.rag_top_k is not None:
        changes["rag_top_k"] = int(options.rag_top_k)
    if options.system_prompt:
        changes["system_prompt"] = options.system_prompt
    if options.additional_context:
        changes["extra_context"] = (*config.extra_context, options.additional_context)
    return replace(config, **changes) if changes else config


async def load_company_default(db: AsyncSession, company_id: uuid.UUID) -> AiConfiguration | None:
    result = await db.execute(
        select(AiConfiguration).where(
            AiConfiguration.company_id == company_id,
            AiConfiguration.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def load_personality(
    db: AsyncSession, company_id: uuid.UUID, personality_id: uuid.UUID
) -> AiPersonality | None:
    result = await db.execute(
        select(AiPersonality).where(
            AiPersonality.id == personality_id,
            AiPersonality.company_id == company_id,
            AiPersonality.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def resolve_ai_config(
    db: AsyncSession,
    company_id: uuid.UUID,
    options: TurnOptions,
    degraded: list[str] | None = None,
) -> ResolvedAiConfig | AiError:
    """Pick the personality or company default for one turn.

    A missing or foreign personality is not fatal: it is logged, recorded
    as ``personality_not_found`` in ``degraded`` and the company default is
    used instead.
    """
    if options.personality_id is not None:
        personality = await load_personality(db, company_id, options.personality_id)
        if personality is not None:
            logger.info("🎭 Personality %s (%s) selected", personality.name, personality.agent_type)
            return apply_options(from_personality(personality), options)
        logger.warning(
            "Personality %s not found or inactive for company %s — using company default",
            options.personality_id, company_id,
        )
        if degraded is not None:
            degraded.append("personality_not_found")

    default = await load_company_default(db, company_id)
    if default is None:
        return AiError(AiErrorKind.NOT_CONFIGURED, "AI is not configured for this company")
    if not default.auto_respond:
        return AiError(AiErrorKind.AUTO_RESPOND_DISABLED, "Auto-respond is disabled")
    return apply_options(from_company_default(default), options)
