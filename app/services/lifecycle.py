"""Appointment normalization rules and lifecycle state machine."""

from typing import Any

from app.core.exceptions import InvalidTransitionException
from app.schemas.appointments import AppointmentStatus, AppointmentType, LifecycleAction

DEFAULT_DURATION = 60
MIN_DURATION = 15
MAX_DURATION = 180

# Free-form type input -> canonical type
TYPE_SYNONYMS: dict[str, AppointmentType] = {
    "video": AppointmentType.VIDEO_CONSULTATION,
    "video-call": AppointmentType.VIDEO_CONSULTATION,
    "phone": AppointmentType.CONSULTATION,
    "audio": AppointmentType.CONSULTATION,
    "in-person": AppointmentType.CONSULTATION,
    "follow-up": AppointmentType.FOLLOW_UP,
    "followup": AppointmentType.FOLLOW_UP,
    "group": AppointmentType.GROUP_SESSION,
    "initial": AppointmentType.INITIAL_CONSULTATION,
    "assessment": AppointmentType.NUTRITION_ASSESSMENT,
}

# (current status, action) -> next status
TRANSITIONS: dict[tuple[AppointmentStatus, LifecycleAction], AppointmentStatus] = {
    (AppointmentStatus.SCHEDULED, LifecycleAction.CANCELLED): AppointmentStatus.CANCELLED,
    (AppointmentStatus.SCHEDULED, LifecycleAction.RESCHEDULED): AppointmentStatus.RESCHEDULED,
    (AppointmentStatus.SCHEDULED, LifecycleAction.COMPLETED): AppointmentStatus.COMPLETED,
    (AppointmentStatus.RESCHEDULED, LifecycleAction.CANCELLED): AppointmentStatus.CANCELLED,
    (AppointmentStatus.RESCHEDULED, LifecycleAction.RESCHEDULED): AppointmentStatus.RESCHEDULED,
    (AppointmentStatus.RESCHEDULED, LifecycleAction.COMPLETED): AppointmentStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})

_ACTION_VERBS = {
    LifecycleAction.CANCELLED: "cancel",
    LifecycleAction.RESCHEDULED: "reschedule",
    LifecycleAction.COMPLETED: "complete",
    LifecycleAction.CREATED: "create",
}


def normalize_type(value: Any) -> AppointmentType:
    """
    Map free-form appointment type input onto the canonical enumeration.

    Args:
        value: Raw type from the request

    Returns:
        Canonical type; unrecognized or missing values become ``consultation``
    """
    if not value or not isinstance(value, str):
        return AppointmentType.CONSULTATION

    key = value.strip().lower()
    if key in TYPE_SYNONYMS:
        return TYPE_SYNONYMS[key]

    try:
        return AppointmentType(key.replace("-", "_").replace(" ", "_"))
    except ValueError:
        return AppointmentType.CONSULTATION


def normalize_duration(value: Any) -> int:
    """Whole minutes within the bookable range; anything else becomes 60 minutes."""
    if value is None or isinstance(value, bool):
        return DEFAULT_DURATION
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return DEFAULT_DURATION
    # Fractional, NaN and out-of-range values are not bookable
    if not minutes.is_integer() or not MIN_DURATION <= minutes <= MAX_DURATION:
        return DEFAULT_DURATION
    return int(minutes)


def next_status(current: str | AppointmentStatus, action: LifecycleAction) -> AppointmentStatus:
    """
    Apply a lifecycle action to a status.

    Args:
        current: Current appointment status
        action: Transition being requested

    Returns:
        Resulting status

    Raises:
        InvalidTransitionException: If the transition is not allowed
    """
    status = AppointmentStatus(current)
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidTransitionException(status.value, _ACTION_VERBS[action]) from None


def fold_status(actions: list[LifecycleAction]) -> AppointmentStatus:
    """Derive the current status by replaying a lifecycle history."""
    if not actions or actions[0] != LifecycleAction.CREATED:
        raise ValueError("lifecycle history must start with a created event")
    status = AppointmentStatus.SCHEDULED
    for action in actions[1:]:
        status = next_status(status, action)
    return status
