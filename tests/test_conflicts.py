"""Tests for overlap detection."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import insert

from app.core.exceptions import SchedulingConflictException
from app.models.appointments import appointments
from app.services.conflict_checker import ConflictChecker, intervals_overlap

TEN = datetime(2030, 6, 3, 10, 0, tzinfo=UTC)


def test_intervals_overlap():
    assert intervals_overlap(TEN, 30, TEN + timedelta(minutes=15), 30)
    assert intervals_overlap(TEN, 60, TEN + timedelta(minutes=15), 15)
    assert intervals_overlap(TEN + timedelta(minutes=15), 15, TEN, 60)


def test_touching_intervals_do_not_overlap():
    assert not intervals_overlap(TEN, 30, TEN + timedelta(minutes=30), 30)
    assert not intervals_overlap(TEN + timedelta(minutes=30), 30, TEN, 30)


async def _book(db, provider, client, start, duration=30, status="scheduled"):
    await db.execute(
        insert(appointments).values(
            provider_id=provider["id"],
            client_id=client["id"],
            scheduled_at=start,
            ends_at=start + timedelta(minutes=duration),
            duration=duration,
            type="consultation",
            status=status,
            created_by={"userId": str(provider["id"]), "role": provider["role"], "name": "x"},
        )
    )
    await db.commit()


@pytest.mark.asyncio
async def test_find_conflicts(db_session, dietitian, other_dietitian, assigned_client):
    await _book(db_session, dietitian, assigned_client, TEN)
    checker = ConflictChecker(db_session)

    assert await checker.has_conflict(dietitian["id"], TEN + timedelta(minutes=15), 30)
    assert not await checker.has_conflict(dietitian["id"], TEN + timedelta(minutes=30), 30)
    assert not await checker.has_conflict(dietitian["id"], TEN - timedelta(minutes=30), 30)
    # Other providers are independent
    assert not await checker.has_conflict(other_dietitian["id"], TEN, 30)


@pytest.mark.asyncio
async def test_cancelled_appointments_do_not_conflict(db_session, dietitian, assigned_client):
    await _book(db_session, dietitian, assigned_client, TEN, status="cancelled")

    assert not await ConflictChecker(db_session).has_conflict(dietitian["id"], TEN, 30)


@pytest.mark.asyncio
async def test_excluded_appointment_ignored(db_session, dietitian, assigned_client):
    await _book(db_session, dietitian, assigned_client, TEN)
    checker = ConflictChecker(db_session)
    [existing] = await checker.find_conflicts(dietitian["id"], TEN, 30)

    assert not await checker.has_conflict(dietitian["id"], TEN, 45, exclude_id=existing["id"])


@pytest.mark.asyncio
async def test_ensure_no_conflict_reports_ids(db_session, dietitian, assigned_client):
    await _book(db_session, dietitian, assigned_client, TEN, duration=60)
    checker = ConflictChecker(db_session)

    with pytest.raises(SchedulingConflictException) as exc_info:
        await checker.ensure_no_conflict(dietitian["id"], TEN + timedelta(minutes=45), 30)

    assert exc_info.value.status_code == 409
    assert len(exc_info.value.details["conflictingAppointmentIds"]) == 1
