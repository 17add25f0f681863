"""Calendar configuration — booking rules for a company's appointments."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from replyflow.models.base import Base, utcnow

DEFAULT_WORKING_HOURS = {
    "monday": {"start": "09:00", "end": "18:00", "enabled": True},
    "tuesday": {"start": "09:00", "end": "18:00", "enabled": True},
    "wednesday": {"start": "09:00", "end": "18:00", "enabled": True},
    "thursday": {"start": "09:00", "end": "18:00", "enabled": True},
    "friday": {"start": "09:00", "end": "18:00", "enabled": True},
    "saturday": {"start": "09:00", "end": "13:00", "enabled": False},
    "sunday": {"start": "09:00", "end": "13:00", "enabled": False},
}


class CalendarConfiguration(Base):
    __tablename__ = "calendar_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    provider: Mapped[str] = mapped_column(String(50), default="google")
    calendar_id: Mapped[str | None] = mapped_column(String(255))
    is_connected: Mapped[bool] = mapped_column(Boolean, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    slot_duration: Mapped[int] = mapped_column(Integer, default=30)  # minutes
    buffer_time: Mapped[int] = mapped_column(Integer, default=0)  # minutes
    advance_booking_days: Mapped[int] = mapped_column(Integer, default=30)
    min_notice_hours: Mapped[int] = mapped_column(Integer, default=24)
    working_hours: Mapped[dict | None] = mapped_column(JSON)  # None → DEFAULT_WORKING_HOURS
    blocked_dates: Mapped[list] = mapped_column(JSON, default=list)  # ["YYYY-MM-DD", ...]
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    booking_instructions: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_connected and self.is_enabled)

    def __repr__(self) -> str:
        return f"<CalendarConfiguration {self.company_id} enabled={self.is_enabled}>"
