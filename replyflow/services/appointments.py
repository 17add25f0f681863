"""Appointment availability and booking.

Slots are generated from the company's calendar configuration (working
hours, slot length, buffer, minimum notice, blocked dates) and checked
against confirmed or pending appointments already stored. The AI
pipeline uses this to show availability in the prompt and to book
appointments the model requests with a [BOOK_APPOINTMENT: ...] tag.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import Appointment, CalendarConfiguration, Conversation, Customer
from replyflow.models.appointment import BLOCKING_STATUSES
from replyflow.models.base import utcnow
from replyflow.models.calendar_configuration import DEFAULT_WORKING_HOURS
from replyflow.services.ai.response import AppointmentRequest

logger = logging.getLogger("appointments")

LOCAL_APPOINTMENT_MINUTES = 60
MAX_DATES_SHOWN = 5


class SlotUnavailableError(Exception):
    """The requested time is outside working hours or already taken."""


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown calendar timezone %r — using UTC", name)
        return ZoneInfo("UTC")


def _hhmm(value: str) -> time:
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute))


async def get_calendar_config(db: AsyncSession, company_id: uuid.UUID) -> CalendarConfiguration | None:
    result = await db.execute(
        select(CalendarConfiguration).where(CalendarConfiguration.company_id == company_id)
    )
    return result.scalar_one_or_none()


class AppointmentService:
    def __init__(
        self,
        db: AsyncSession,
        config: CalendarConfiguration,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self.config = config
        self._clock = clock
        self.tz = _zone(config.timezone)

    @classmethod
    async def for_company(
        cls, db: AsyncSession, company_id: uuid.UUID, clock: Callable[[], datetime] = utcnow
    ) -> "AppointmentService | None":
        """Service for a company whose calendar is connected and enabled, else None."""
        config = await get_calendar_config(db, company_id)
        if config is None or not config.is_bookable:
            return None
        return cls(db, config, clock)

    def booking_context(self) -> dict[str, Any]:
        return {
            "slot_duration": self.config.slot_duration,
            "min_notice_hours": self.config.min_notice_hours,
            "advance_booking_days": self.config.advance_booking_days,
            "timezone": self.config.timezone,
            "booking_instructions": self.config.booking_instructions,
        }

    # ── Availability ────────────────────────────────────────────

    async def _busy_periods(self, start: datetime, end: datetime) -> list[tuple[datetime, datetime]]:
        result = await self._db.execute(
            select(Appointment.start_time, Appointment.end_time).where(
                Appointment.company_id == self.config.company_id,
                Appointment.status.in_(BLOCKING_STATUSES),
                Appointment.start_time >= start.astimezone(timezone.utc),
                Appointment.start_time <= end.astimezone(timezone.utc),
            )
        )
        return [(_aware(s), _aware(e)) for s, e in result.all()]

    async def available_slots(self, day: date) -> list[dict[str, str]]:
        working_hours = self.config.working_hours or DEFAULT_WORKING_HOURS
        hours = working_hours.get(day.strftime("%A").lower())
        if not hours or not hours.get("enabled"):
            return []
        if day.isoformat() in (self.config.blocked_dates or []):
            return []

        slot = self.config.slot_duration or 30
        buffer = timedelta(minutes=self.config.buffer_time or 0)
        now = self._clock().astimezone(self.tz)
        min_notice = now + timedelta(hours=self.config.min_notice_hours or 0)

        if datetime.combine(day, time.max, tzinfo=self.tz) < min_notice:
            return []

        day_start = datetime.combine(day, _hhmm(hours["start"]), tzinfo=self.tz)
        day_end = datetime.combine(day, _hhmm(hours["end"]), tzinfo=self.tz)

        if day == now.date() and min_notice > day_start:
            rounded = math.ceil(min_notice.minute / slot) * slot
            day_start = min_notice.replace(minute=0, second=0, microsecond=0) + timedelta(minutes=rounded)

        busy = await self._busy_periods(day_start, day_end)

        slots: list[dict[str, str]] = []
        current = day_start
        while current + timedelta(minutes=slot) <= day_end:
            slot_end = current + timedelta(minutes=slot)
            free = all(
                not (current - buffer < busy_end + buffer and slot_end > busy_start)
                for busy_start, busy_end in busy
            )
            if free:
                slots.append({
                    "start": current.strftime("%H:%M"),
                    "end": slot_end.strftime("%H:%M"),
                    "start_datetime": current.isoformat(),
                    "end_datetime": slot_end.isoformat(),
                })
            current = slot_end
        return slots

    async def available_dates(self, days: int | None = None) -> list[dict[str, Any]]:
        days = days or self.config.advance_booking_days or 14
        today = self._clock().astimezone(self.tz).date()
        dates = []
        for offset in range(days):
            day = today + timedelta(days=offset)
            slots = await self.available_slots(day)
            if slots:
                dates.append({
                    "date": day.isoformat(),
                    "day_name": day.strftime("%A"),
                    "formatted": f"{day:%a}, {day:%b} {day.day}",
                    "slot_count": len(slots),
                })
        return dates

    async def format_dates_for_ai(self, max_days: int = 7) -> str:
        dates = await self.available_dates(max_days)
        if not dates:
            return f"No available appointment slots in the next {max_days} days."
        shown = [f"{d['formatted']} ({d['slot_count']} slots)" for d in dates[:MAX_DATES_SHOWN]]
        return "Available dates: " + ", ".join(shown)

    # ── Booking ─────────────────────────────────────────────────

    async def book(
        self,
        start: datetime,
        *,
        customer_name: str,
        customer_email: str | None = None,
        customer_phone: str | None = None,
        customer_id: uuid.UUID | None = None,
        conversation_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Book a slot after re-checking it is still free."""
        local_start = start.astimezone(self.tz)
        slots = await self.available_slots(local_start.date())
        if not any(s["start"] == local_start.strftime("%H:%M") for s in slots):
            raise SlotUnavailableError(
                "The selected time slot is no longer available. Please choose another time."
            )

        appointment = Appointment(
            company_id=self.config.company_id,
            customer_id=customer_id,
            conversation_id=conversation_id,
            title=f"Appointment with {customer_name}",
            description=notes,
            start_time=local_start.astimezone(timezone.utc),
            end_time=(local_start + timedelta(minutes=self.config.slot_duration)).astimezone(timezone.utc),
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            status="confirmed",
            notes=notes,
            metadata_={"booked_via": "chat"},
        )
        self._db.add(appointment)
        await self._db.flush()
        logger.info("📅 Appointment booked %s at %s", appointment.id, local_start.isoformat())
        return appointment


async def book_from_request(
    db: AsyncSession,
    request: AppointmentRequest,
    conversation: Conversation,
    customer: Customer | None,
    clock: Callable[[], datetime] = utcnow,
) -> Appointment | None:
    """Book what the model asked for. Failures are logged, never raised."""
    name = request.name or (customer.name if customer else None) or "Customer"
    email = request.email or (customer.email if customer else None)
    phone = request.phone or (customer.phone if customer else None)

    try:
        config = await get_calendar_config(db, conversation.company_id)
        tz = _zone(config.timezone if config else None)
        start = datetime.combine(date.fromisoformat(request.date), _hhmm(request.time), tzinfo=tz)

        if config is not None and config.is_bookable:
            service = AppointmentService(db, config, clock)
            return await service.book(
                start,
                customer_name=name,
                customer_email=email,
                customer_phone=phone,
                customer_id=customer.id if customer else None,
                conversation_id=conversation.id,
                notes="Booked via AI chat",
            )

        appointment = Appointment(
            company_id=conversation.company_id,
            customer_id=customer.id if customer else None,
            conversation_id=conversation.id,
            title=f"Appointment with {name}",
            description="Booked via AI chat",
            start_time=start.astimezone(timezone.utc),
            end_time=(start + timedelta(minutes=LOCAL_APPOINTMENT_MINUTES)).astimezone(timezone.utc),
            customer_name=name,
            customer_email=email,
            customer_phone=phone,
            status="confirmed",
            notes="Booked via AI chat (local only - calendar not connected)",
            metadata_={"booked_via": "ai_chat", "local_only": True},
        )
        db.add(appointment)
        await db.flush()
        logger.info("📅 Local appointment %s booked for conversation %s", appointment.id, conversation.id)
        return appointment
    except (ValueError, SlotUnavailableError, SQLAlchemyError) as exc:
        logger.error(
            "Failed to book appointment for conversation %s (%s): %s",
            conversation.id, request.to_dict(), exc,
        )
        return None
