"""Tests for appointment normalization and the lifecycle state machine."""

import pytest

from app.core.exceptions import InvalidTransitionException
from app.schemas.appointments import AppointmentStatus, AppointmentType, LifecycleAction
from app.services.lifecycle import fold_status, next_status, normalize_duration, normalize_type


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("video", AppointmentType.VIDEO_CONSULTATION),
        ("Video-Call", AppointmentType.VIDEO_CONSULTATION),
        ("follow-up", AppointmentType.FOLLOW_UP),
        ("follow up", AppointmentType.FOLLOW_UP),
        ("nutrition_assessment", AppointmentType.NUTRITION_ASSESSMENT),
        ("group", AppointmentType.GROUP_SESSION),
        ("unknown-garbage", AppointmentType.CONSULTATION),
        ("", AppointmentType.CONSULTATION),
        (42, AppointmentType.CONSULTATION),
        ("x" * 500, AppointmentType.CONSULTATION),
        (None, AppointmentType.CONSULTATION),
    ],
)
def test_normalize_type(raw, expected):
    assert normalize_type(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (30, 30),
        ("45", 45),
        (45.0, 45),
        (15, 15),
        (180, 180),
        (5, 60),
        (400, 60),
        (None, 60),
        ("abc", 60),
        ("45.5", 60),
        (45.5, 60),
        (float("nan"), 60),
        ([30], 60),
        (True, 60),
    ],
)
def test_normalize_duration(raw, expected):
    assert normalize_duration(raw) == expected


def test_allowed_transitions():
    assert next_status("scheduled", LifecycleAction.CANCELLED) == AppointmentStatus.CANCELLED
    assert next_status("scheduled", LifecycleAction.RESCHEDULED) == AppointmentStatus.RESCHEDULED
    assert next_status("rescheduled", LifecycleAction.RESCHEDULED) == AppointmentStatus.RESCHEDULED
    assert next_status("rescheduled", LifecycleAction.COMPLETED) == AppointmentStatus.COMPLETED


@pytest.mark.parametrize("terminal", ["completed", "cancelled"])
@pytest.mark.parametrize(
    "action",
    [LifecycleAction.CANCELLED, LifecycleAction.RESCHEDULED, LifecycleAction.COMPLETED],
)
def test_terminal_statuses_reject_transitions(terminal, action):
    with pytest.raises(InvalidTransitionException) as exc_info:
        next_status(terminal, action)
    assert exc_info.value.status_code == 400
    assert terminal in exc_info.value.message


def test_fold_status_replays_history():
    history = [LifecycleAction.CREATED, LifecycleAction.RESCHEDULED, LifecycleAction.CANCELLED]
    assert fold_status(history) == AppointmentStatus.CANCELLED
    assert fold_status([LifecycleAction.CREATED]) == AppointmentStatus.SCHEDULED


def test_fold_status_requires_created_first():
    with pytest.raises(ValueError):
        fold_status([LifecycleAction.CANCELLED])
