"""Appointment schemas for request/response validation."""

from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator

from app.schemas.common import CamelModel


class UserRole(str, Enum):
    """Caller roles."""

    ADMIN = "admin"
    DIETITIAN = "dietitian"
    HEALTH_COUNSELOR = "health_counselor"
    CLIENT = "client"


PROVIDER_ROLES = frozenset({UserRole.DIETITIAN.value, UserRole.HEALTH_COUNSELOR.value})


class AppointmentType(str, Enum):
    """Appointment type enumeration."""

    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    GROUP_SESSION = "group_session"
    VIDEO_CONSULTATION = "video_consultation"
    INITIAL_CONSULTATION = "initial_consultation"
    NUTRITION_ASSESSMENT = "nutrition_assessment"


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class LifecycleAction(str, Enum):
    """Lifecycle history actions."""

    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"


def _as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


_PROVIDER_ID_ALIASES = AliasChoices("dietitianId", "providerId", "dietitian_id", "provider_id")


class AppointmentCreate(CamelModel):
    """Schema for creating a new appointment (staff booking)."""

    dietitian_id: UUID = Field(..., validation_alias=_PROVIDER_ID_ALIASES)
    client_id: UUID
    scheduled_at: datetime
    # Free-form; normalized by the recorder
    duration: Any = None
    type: Any = None
    notes: str | None = Field(None, max_length=2000)
    appointment_type_id: str | None = None
    appointment_mode_id: str | None = None
    mode_name: str | None = Field(None, max_length=100)
    location: str | None = Field(None, max_length=500)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store every timestamp as UTC."""
        return _as_utc(v)


class ClientAppointmentCreate(CamelModel):
    """Schema for a client booking with one of their assigned providers."""

    dietitian_id: UUID = Field(..., validation_alias=_PROVIDER_ID_ALIASES)
    scheduled_at: datetime
    duration: Any = None
    type: Any = "video_consultation"
    notes: str | None = Field(None, max_length=2000)
    appointment_mode_id: str | None = None
    mode_name: str | None = Field(None, max_length=100)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store every timestamp as UTC."""
        return _as_utc(v)


class AppointmentCancel(CamelModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=1000)


class AppointmentReschedule(CamelModel):
    """Schema for moving an appointment to a new time."""

    scheduled_at: datetime
    duration: Any = None
    reason: str | None = Field(None, max_length=1000)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, v: datetime) -> datetime:
        """Store every timestamp as UTC."""
        return _as_utc(v)


class PerformerRef(CamelModel):
    """Who performed a lifecycle action."""

    user_id: UUID
    role: str
    name: str
    timestamp: datetime
    reason: str | None = None
    previous_scheduled_at: datetime | None = None


class LifecycleEvent(CamelModel):
    """One entry of an appointment's lifecycle history."""

    sequence: int
    action: LifecycleAction
    performed_by: UUID
    performed_by_role: str
    performed_by_name: str
    timestamp: datetime
    details: dict[str, Any] | None = None


class PartySummary(CamelModel):
    """Provider or client as embedded in an appointment."""

    id: UUID
    first_name: str
    last_name: str
    email: str
    avatar: str | None = None


class AppointmentResponse(CamelModel):
    """Schema for appointment response."""

    id: UUID
    provider_id: UUID
    client_id: UUID
    provider: PartySummary | None = None
    client: PartySummary | None = None
    scheduled_at: datetime
    ends_at: datetime
    duration: int
    type: AppointmentType
    appointment_type_id: str | None = None
    appointment_mode_id: str | None = None
    mode_name: str | None = None
    location: str | None = None
    notes: str | None = None
    status: AppointmentStatus
    meeting_link: str | None = None
    meeting_provider: str | None = None
    meeting_details: dict[str, Any] | None = None
    calendar_event_ids: dict[str, Any] | None = None
    email_status: dict[str, Any] | None = None
    created_by: PerformerRef
    cancelled_by: PerformerRef | None = None
    rescheduled_by: PerformerRef | None = None
    lifecycle_history: list[LifecycleEvent] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class Pagination(CamelModel):
    """Pagination block of list responses."""

    page: int
    limit: int
    total: int
    pages: int


class AppointmentListResponse(CamelModel):
    """Schema for paginated appointment list response."""

    appointments: list[AppointmentResponse]
    pagination: Pagination


class AppointmentFilters(CamelModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    on_date: date | None = Field(None, alias="date")
    search: str | None = None
    dietitian_id: UUID | None = None
    client_id: UUID | None = None
    limit: int = Field(default=10, ge=1, le=100)
    page: int = Field(default=1, ge=1)
    include_all: bool = False
    newest_first: bool = False
