"""Pydantic schemas for request/response validation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ── Inbound messages ────────────────────────────────────────────────


class MediaItem(BaseModel):
    type: str  # image | audio | video | file
    url: str


class ReplyTo(BaseModel):
    text: str | None = None
    message_id: str | None = None


class CustomerProfile(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    language: str | None = None
    profile_data: dict[str, Any] = Field(default_factory=dict)


class AiOptionsIn(BaseModel):
    """Per-turn AI overrides, usually set by a workflow step."""
    personality_id: uuid.UUID | None = None
    enable_product_search: bool | None = None
    rag_top_k: int | None = Field(default=None, ge=1, le=20)
    system_prompt: str | None = None
    additional_context: str | None = None


class InboundMessage(BaseModel):
    """A customer message already parsed out of a platform webhook."""
    connection_id: uuid.UUID
    customer_platform_id: str = Field(min_length=1, max_length=255)
    customer: CustomerProfile | None = None
    text: str | None = None
    message_type: str = "text"
    media: list[MediaItem] = Field(default_factory=list)
    reply_to: ReplyTo | None = None
    media_text: str | None = None
    platform_message_id: str | None = Field(default=None, max_length=255)
    ai_options: AiOptionsIn | None = None


class InboundResult(BaseModel):
    message_id: uuid.UUID
    conversation_id: uuid.UUID
    duplicate: bool
    scheduled: bool


# ── AI usage ────────────────────────────────────────────────────────


class ModelUsageOut(BaseModel):
    current: int
    limit: int
    remaining: int
    percentage: float
    resets_at: datetime


class ProviderUsageOut(BaseModel):
    provider: str
    models: dict[str, ModelUsageOut]


# ── Indexing ────────────────────────────────────────────────────────


class KnowledgeReindexOut(BaseModel):
    knowledge_base_id: uuid.UUID
    chunk_count: int
    embedded_count: int
    total_time_ms: int


class ProductReindexOut(BaseModel):
    product_id: uuid.UUID
    indexed: bool
    has_vector: bool
