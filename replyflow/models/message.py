"""Message model — append-only unit of communication within a conversation."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from replyflow.models.base import Base, utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "platform_message_id",
            name="uq_messages_conversation_platform_id",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # customer | agent | ai | system
    content: Mapped[str | None] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(
        String(30), default="text"
    )  # text | image | audio | video | file | text_with_images
    media: Mapped[list] = mapped_column(JSON, default=list)  # [{"type": ..., "url": ...}]
    # reply_to, media_text, and AI provenance for outgoing messages
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    platform_message_id: Mapped[str | None] = mapped_column(String(255))
    ai_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<Message [{self.sender_type}] {(self.content or '')[:50]}>"
