"""Tests for availability, booking and tag-driven booking."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
import pytest_asyncio

from replyflow.models import Appointment, CalendarConfiguration
from replyflow.services.ai.response import AppointmentRequest
from replyflow.services.appointments import AppointmentService, SlotUnavailableError, book_from_request

MONDAY_8AM = datetime(2026, 3, 9, 8, 0, tzinfo=timezone.utc)


def _clock():
    return MONDAY_8AM


@pytest_asyncio.fixture
async def calendar(db, company) -> CalendarConfiguration:
    config = CalendarConfiguration(
        company_id=company.id,
        is_connected=True,
        is_enabled=True,
        slot_duration=60,
        buffer_time=0,
        min_notice_hours=2,
        advance_booking_days=14,
        timezone="UTC",
        blocked_dates=["2026-03-11"],
    )
    db.add(config)
    await db.flush()
    return config


@pytest.mark.asyncio
async def test_today_starts_after_minimum_notice(db, calendar):
    service = AppointmentService(db, calendar, _clock)
    slots = await service.available_slots(date(2026, 3, 9))
    assert [s["start"] for s in slots] == [f"{h:02d}:00" for h in range(10, 18)]


@pytest.mark.asyncio
async def test_disabled_and_blocked_days_have_no_slots(db, calendar):
    service = AppointmentService(db, calendar, _clock)
    assert await service.available_slots(date(2026, 3, 14)) == []  # Saturday
    assert await service.available_slots(date(2026, 3, 11)) == []  # blocked


@pytest.mark.asyncio
async def test_existing_appointments_and_buffer_block_slots(db, company, calendar):
    db.add(Appointment(
        company_id=company.id,
        title="Taken",
        start_time=datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc),
        end_time=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
        status="confirmed",
    ))
    await db.flush()
    service = AppointmentService(db, calendar, _clock)

    starts = [s["start"] for s in await service.available_slots(date(2026, 3, 10))]
    assert "11:00" not in starts
    assert "10:00" in starts and "12:00" in starts

    calendar.buffer_time = 15
    starts = [s["start"] for s in await service.available_slots(date(2026, 3, 10))]
    assert "12:00" not in starts


@pytest.mark.asyncio
async def test_cancelled_appointments_do_not_block(db, company, calendar):
    db.add(Appointment(
        company_id=company.id,
        title="Cancelled",
        start_time=datetime(2026, 3, 10, 11, 0, tzinfo=timezone.utc),
        end_time=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
        status="cancelled",
    ))
    await db.flush()
    starts = [s["start"] for s in await AppointmentService(db, calendar, _clock).available_slots(date(2026, 3, 10))]
    assert "11:00" in starts


@pytest.mark.asyncio
async def test_availability_summary_for_prompt(db, calendar):
    summary = await AppointmentService(db, calendar, _clock).format_dates_for_ai(7)
    assert summary == (
        "Available dates: Mon, Mar 9 (8 slots), Tue, Mar 10 (9 slots), "
        "Thu, Mar 12 (9 slots), Fri, Mar 13 (9 slots)"
    )


@pytest.mark.asyncio
async def test_for_company_requires_connected_and_enabled_calendar(db, company, calendar):
    assert await AppointmentService.for_company(db, company.id) is not None
    calendar.is_enabled = False
    assert await AppointmentService.for_company(db, company.id) is None


@pytest.mark.asyncio
async def test_double_booking_is_rejected(db, calendar):
    service = AppointmentService(db, calendar, _clock)
    start = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
    appointment = await service.book(start, customer_name="Dana")
    assert appointment.metadata_ == {"booked_via": "chat"}
    with pytest.raises(SlotUnavailableError):
        await service.book(start, customer_name="Lee")


@pytest.mark.asyncio
async def test_book_from_request_uses_calendar(db, conversation, customer, calendar):
    appointment = await book_from_request(
        db, AppointmentRequest(date="2026-03-10", time="14:00"), conversation, customer, _clock
    )
    assert appointment is not None
    assert appointment.customer_name == "Dana"
    assert appointment.conversation_id == conversation.id


@pytest.mark.asyncio
async def test_book_from_request_without_calendar_is_local(db, conversation, customer):
    appointment = await book_from_request(
        db, AppointmentRequest(date="2026-03-10", time="14:00", name="Sam"), conversation, customer, _clock
    )
    assert appointment is not None
    assert appointment.metadata_ == {"booked_via": "ai_chat", "local_only": True}
    assert appointment.customer_name == "Sam"
    assert (appointment.end_time - appointment.start_time).total_seconds() == 3600


@pytest.mark.asyncio
async def test_book_from_request_swallows_bad_input(db, conversation, customer, calendar):
    assert await book_from_request(
        db, AppointmentRequest(date="next tuesday", time="14:00"), conversation, customer, _clock
    ) is None
    assert await book_from_request(
        db, AppointmentRequest(date="2026-03-14", time="10:00"), conversation, customer, _clock
    ) is None
