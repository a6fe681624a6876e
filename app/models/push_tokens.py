"""Push tokens model definition using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    String,
    Table,
    Text,
    Uuid,
)

from app.models.base import UTCDateTime, metadata, utcnow

push_tokens = Table(
    "push_tokens",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("fcm_token", Text, nullable=False),
    Column("platform", String(10), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True, index=True),
    Column("last_used_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    CheckConstraint(
        "platform IN ('android', 'ios', 'web')",
        name="push_tokens_platform_check",
    ),
)
