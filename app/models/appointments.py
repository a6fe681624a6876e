"""Appointments and lifecycle event tables using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.models.base import UTCDateTime, metadata, utcnow

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Parties
    Column("provider_id", Uuid, ForeignKey("users.id"), nullable=False),
    Column("client_id", Uuid, ForeignKey("users.id"), nullable=False),
    # Schedule; ends_at is always scheduled_at + duration
    Column("scheduled_at", UTCDateTime, nullable=False),
    Column("ends_at", UTCDateTime, nullable=False),
    Column("duration", Integer, nullable=False),
    # Classification and mode
    Column("type", String(32), nullable=False, server_default="consultation"),
    Column("appointment_type_id", Text, nullable=True),
    Column("appointment_mode_id", Text, nullable=True),
    Column("mode_name", Text, nullable=True),
    Column("location", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Status projection of the lifecycle event log
    Column("status", String(20), nullable=False, server_default="scheduled"),
    # Meeting artifacts
    Column("meeting_link", Text, nullable=True),
    Column("meeting_provider", String(32), nullable=True),
    Column("meeting_details", JSON, nullable=True),
    # Calendar and email artifacts: {"provider": ..., "client": ...}
    Column("calendar_event_ids", JSON, nullable=True),
    Column("email_status", JSON, nullable=True),
    # Performer references: {"userId", "role", "name", "timestamp"}
    Column("created_by", JSON, nullable=False),
    Column("cancelled_by", JSON, nullable=True),
    Column("rescheduled_by", JSON, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint(
        "status IN ('scheduled', 'completed', 'cancelled', 'rescheduled')",
        name="appointments_status_check",
    ),
    CheckConstraint("duration BETWEEN 15 AND 180", name="appointments_duration_check"),
    Index("idx_appointments_provider_schedule", "provider_id", "scheduled_at"),
    Index("idx_appointments_client", "client_id"),
)

# Append-only lifecycle history; current status is the fold of these rows
appointment_events = Table(
    "appointment_events",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("sequence", Integer, nullable=False),
    Column("action", String(20), nullable=False),
    Column("performed_by", Uuid, nullable=False),
    Column("performed_by_role", String(32), nullable=False),
    Column("performed_by_name", Text, nullable=False),
    Column("timestamp", UTCDateTime, nullable=False, default=utcnow),
    Column("details", JSON, nullable=True),
    CheckConstraint(
        "action IN ('created', 'cancelled', 'rescheduled', 'completed')",
        name="appointment_events_action_check",
    ),
    UniqueConstraint("appointment_id", "sequence", name="unique_appointment_event_sequence"),
    Index("idx_appointment_events_appointment", "appointment_id"),
)
