"""Tests for slot calculation."""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from app.core.exceptions import ProviderNotFoundException
from app.services.slot_service import (
    SlotService,
    TimeWindow,
    build_day_windows,
    generate_slots,
)

MONDAY = date(2030, 6, 3)
NINE_TO_FIVE = TimeWindow(time(9, 0), time(17, 0))
LUNCH = TimeWindow(time(14, 0), time(15, 0))
LONG_AGO = datetime(2000, 1, 1, tzinfo=UTC)


def _at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=UTC)


def test_default_window_used_when_nothing_configured():
    """Providers without availability work the default hours every day."""
    assert build_day_windows(None, MONDAY, NINE_TO_FIVE) == [NINE_TO_FIVE]
    assert build_day_windows([], MONDAY + timedelta(days=6), NINE_TO_FIVE) == [NINE_TO_FIVE]


def test_configured_windows_for_weekday_only():
    """Only the target weekday's windows are returned, in start order."""
    availability = [
        {"day": "monday", "startTime": "13:00", "endTime": "16:00"},
        {"day": "Monday", "startTime": "08:00", "endTime": "10:00"},
        {"day": "tuesday", "startTime": "09:00", "endTime": "12:00"},
    ]

    windows = build_day_windows(availability, MONDAY, NINE_TO_FIVE)

    assert windows == [
        TimeWindow(time(8, 0), time(10, 0)),
        TimeWindow(time(13, 0), time(16, 0)),
    ]


def test_configured_provider_off_on_other_days():
    """A configured provider is unavailable on days without windows."""
    availability = [{"day": "tuesday", "startTime": "09:00", "endTime": "12:00"}]
    assert build_day_windows(availability, MONDAY, NINE_TO_FIVE) == []


def test_malformed_windows_are_skipped():
    availability = [
        {"day": "monday", "startTime": "nine", "endTime": "10:00"},
        {"day": "monday", "startTime": "12:00", "endTime": "11:00"},
        {"day": "monday", "startTime": "10:00"},
        {"day": "monday", "startTime": "15:00", "endTime": "16:00"},
    ]
    assert build_day_windows(availability, MONDAY, NINE_TO_FIVE) == [
        TimeWindow(time(15, 0), time(16, 0))
    ]


def test_slots_step_by_duration_and_fit_window():
    """Candidates step by the duration and never overrun the window."""
    slots = generate_slots(MONDAY, [TimeWindow(time(9, 0), time(10, 45))], 30, [], LONG_AGO)

    assert [s.time for s in slots] == ["09:00", "09:30", "10:00"]
    assert [s.end_time for s in slots] == ["09:30", "10:00", "10:30"]
    assert all(s.available for s in slots)
    assert slots[0].starts_at == _at(9)


def test_slots_skip_lunch_break():
    slots = generate_slots(MONDAY, [NINE_TO_FIVE], 60, [], LONG_AGO, lunch_break=LUNCH)

    labels = [s.time for s in slots]
    assert "14:00" not in labels
    assert labels == ["09:00", "10:00", "11:00", "12:00", "13:00", "15:00", "16:00"]


def test_booked_interval_marks_overlapping_slots_unavailable():
    """A booking blocks every slot it overlaps, not only the one it starts in."""
    booked = [{"scheduled_at": _at(10, 15), "ends_at": _at(11, 0)}]

    slots = {s.time: s for s in generate_slots(MONDAY, [NINE_TO_FIVE], 30, booked, LONG_AGO)}

    assert slots["09:30"].available is True
    assert slots["10:00"].available is False
    assert slots["10:30"].available is False
    assert slots["11:00"].available is True
    assert slots["10:00"].conflict_reason == "Conflicts with booking 10:15-11:00"


def test_adjacent_booking_does_not_block_slot():
    """Half-open intervals: a booking ending at 10:00 leaves 10:00 free."""
    booked = [{"scheduled_at": _at(9, 30), "ends_at": _at(10, 0)}]

    slots = {s.time: s for s in generate_slots(MONDAY, [NINE_TO_FIVE], 30, booked, LONG_AGO)}

    assert slots["09:30"].available is False
    assert slots["10:00"].available is True


def test_past_slots_excluded():
    """Slots starting at or before now are not offered."""
    now = _at(11, 0)

    slots = generate_slots(MONDAY, [NINE_TO_FIVE], 60, [], now)

    assert [s.time for s in slots][:2] == ["12:00", "13:00"]


def test_overlapping_windows_do_not_duplicate_slots():
    windows = [TimeWindow(time(9, 0), time(11, 0)), TimeWindow(time(10, 0), time(12, 0))]

    slots = generate_slots(MONDAY, windows, 60, [], LONG_AGO)

    assert [s.time for s in slots] == ["09:00", "10:00", "11:00"]


def test_slots_in_clinic_timezone():
    """Labels are local wall-clock times; starts_at is the UTC instant."""
    tz = ZoneInfo("America/New_York")

    slots = generate_slots(MONDAY, [TimeWindow(time(9, 0), time(10, 0))], 60, [], LONG_AGO, tz=tz)

    assert slots[0].time == "09:00"
    assert slots[0].starts_at == _at(13, 0)


@pytest.mark.asyncio
async def test_slot_service_reads_live_bookings(db_session, dietitian, assigned_client):
    """Slots reflect the current non-cancelled appointments for the provider."""
    from sqlalchemy import insert

    from app.models.appointments import appointments

    start = _at(10, 0)
    base = {
        "provider_id": dietitian["id"],
        "client_id": assigned_client["id"],
        "duration": 30,
        "type": "consultation",
        "created_by": {"userId": str(dietitian["id"]), "role": "dietitian", "name": "Dana Test"},
    }
    await db_session.execute(
        insert(appointments).values(
            scheduled_at=start, ends_at=start + timedelta(minutes=30), status="scheduled", **base
        )
    )
    await db_session.execute(
        insert(appointments).values(
            scheduled_at=_at(11, 0),
            ends_at=_at(11, 30),
            status="cancelled",
            **base,
        )
    )
    await db_session.commit()

    result = await SlotService(db_session).get_available_slots(
        dietitian["id"], MONDAY, 30, now=LONG_AGO
    )
    slots = {s.time: s for s in result.slots}

    assert slots["10:00"].available is False
    assert slots["11:00"].available is True
    assert "10:00" not in result.available_slots
    assert result.provider_name == "Dana Test"
    assert result.timezone == "UTC"


@pytest.mark.asyncio
async def test_slot_service_reports_day_off(db_session, make_user):
    provider = await make_user(
        "dietitian",
        "Tess",
        availability=[{"day": "tuesday", "startTime": "09:00", "endTime": "12:00"}],
    )

    result = await SlotService(db_session).get_available_slots(provider["id"], MONDAY, now=LONG_AGO)

    assert result.slots == []
    assert result.message == "Provider is not available on monday"


@pytest.mark.asyncio
async def test_slot_service_rejects_non_provider(db_session, assigned_client):
    with pytest.raises(ProviderNotFoundException):
        await SlotService(db_session).get_available_slots(assigned_client["id"], MONDAY)
