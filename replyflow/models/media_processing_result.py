"""Results of asynchronous media processing (transcripts, image captions)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from replyflow.models.base import Base, utcnow


class MediaProcessingResult(Base):
    __tablename__ = "media_processing_results"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    media_type: Mapped[str] = mapped_column(String(20), nullable=False)  # audio | image
    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending | processing | completed | failed
    text_content: Mapped[str | None] = mapped_column(Text)
    # {"language": "ms", "product_search": true, ...}
    analysis_data: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    def __repr__(self) -> str:
        return f"<MediaProcessingResult {self.media_type} [{self.status}]>"
