"""User model definition using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import UTCDateTime, metadata, utcnow

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("email", Text, nullable=False, index=True),
    # Profile info
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False, server_default=""),
    Column("avatar", Text),
    Column("phone", String(20)),
    Column("role", String(32), nullable=False, server_default="client"),
    Column("is_active", Boolean, nullable=False, default=True),
    # Assignments (client side)
    Column("assigned_dietitian_id", Uuid, nullable=True, index=True),
    Column("assigned_dietitian_ids", JSON, nullable=True),
    Column("assigned_health_counselor_id", Uuid, nullable=True, index=True),
    # Weekly working windows (provider side): [{"day", "startTime", "endTime"}]
    Column("availability", JSON, nullable=True),
    # Google Calendar OAuth tokens
    Column("google_calendar_access_token", Text),
    Column("google_calendar_refresh_token", Text),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint(
        "role IN ('admin', 'dietitian', 'health_counselor', 'client')",
        name="users_role_check",
    ),
)
