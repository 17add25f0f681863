"""AI configuration models — company default and named personalities."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from replyflow.models.base import Base, utcnow


class AiConfiguration(Base):
    """Company-wide default. At most one per company."""

    __tablename__ = "ai_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    primary_provider: Mapped[str] = mapped_column(String(50), nullable=False)  # openai | claude | gemini
    primary_model: Mapped[str | None] = mapped_column(String(100))
    fallback_provider: Mapped[str | None] = mapped_column(String(50))
    fallback_model: Mapped[str | None] = mapped_column(String(100))
    system_prompt: Mapped[str | None] = mapped_column(Text)
    personality_tone: Mapped[str | None] = mapped_column(String(255))
    prohibited_topics: Mapped[list] = mapped_column(JSON, default=list)
    custom_instructions: Mapped[list] = mapped_column(JSON, default=list)
    max_tokens: Mapped[int] = mapped_column(Integer, default=1024)
    temperature: Mapped[float] = mapped_column(Float, default=0.7)
    confidence_threshold: Mapped[float] = mapped_column(Float, default=0.7)
    auto_respond: Mapped[bool] = mapped_column(Boolean, default=True)
    response_delay_seconds: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    def __repr__(self) -> str:
        return f"<AiConfiguration {self.primary_provider}/{self.primary_model}>"


class AiPersonality(Base):
    """A named, reusable AI configuration selectable per workflow or turn."""

    __tablename__ = "ai_personalities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(50), default="general")
    description: Mapped[str | None] = mapped_column(Text)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str | None] = mapped_column(String(100))
    system_prompt: Mapped[str | None] = mapped_column(Text)
    personality_tone: Mapped[str | None] = mapped_column(String(255))
    prohibited_topics: Mapped[list] = mapped_column(JSON, default=list)
    custom_instructions: Mapped[list] = mapped_column(JSON, default=list)
    max_tokens: Mapped[int] = mapped_column(Integer, default=1024)
    temperature: Mapped[float] = mapped_column(Float, default=0.7)
    confidence_threshold: Mapped[float] = mapped_column(Float, default=0.7)
    enable_product_search: Mapped[bool] = mapped_column(Boolean, default=True)
    rag_top_k: Mapped[int] = mapped_column(Integer, default=3)
    knowledge_base_ids: Mapped[list | None] = mapped_column(JSON)  # None → all KBs
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    def __repr__(self) -> str:
        return f"<AiPersonality {self.name}>"
