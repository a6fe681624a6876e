"""Client activity history table using SQLAlchemy Core."""

import uuid

from sqlalchemy import JSON, Column, ForeignKey, Index, String, Table, Text, Uuid

from app.models.base import UTCDateTime, metadata, utcnow

user_history = Table(
    "user_history",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("action", String(32), nullable=False),
    Column("category", String(32), nullable=False),
    Column("description", Text, nullable=False),
    Column("performed_by_id", Uuid, nullable=True),
    Column("metadata", JSON, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utcnow),
    Index("idx_user_history_user", "user_id", "created_at"),
)
