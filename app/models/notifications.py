"""Notification model for tracking push notification history and delivery status."""

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
    Uuid,
)

from app.models.base import UTCDateTime, metadata, utcnow

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("notification_type", String(50), nullable=False),
    Column("icon", Text, nullable=True),
    Column("click_action", Text, nullable=True),
    Column("data", JSON, nullable=True),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("success_count", Integer, nullable=False, server_default="0"),
    Column("failure_count", Integer, nullable=False, server_default="0"),
    Column("failure_reason", Text, nullable=True),
    Column("sent_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    CheckConstraint(
        "notification_type IN ('appointment_booked', 'appointment_cancelled', "
        "'appointment_rescheduled', 'appointment_completed', 'other')",
        name="notifications_type_check",
    ),
    CheckConstraint(
        "status IN ('pending', 'delivered', 'failed')",
        name="notifications_status_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
)
