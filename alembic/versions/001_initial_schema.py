"""Initial schema - users, appointments, lifecycle events, notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        server_default=None if nullable else sa.text("NOW()"),
        nullable=nullable,
    )


def upgrade() -> None:
    """Create the booking schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), server_default="", nullable=False),
        sa.Column("avatar", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(32), server_default="client", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("assigned_dietitian_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_dietitian_ids", sa.JSON(), nullable=True),
        sa.Column("assigned_health_counselor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("availability", sa.JSON(), nullable=True),
        sa.Column("google_calendar_access_token", sa.Text(), nullable=True),
        sa.Column("google_calendar_refresh_token", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "role IN ('admin', 'dietitian', 'health_counselor', 'client')",
            name="users_role_check",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_assigned_dietitian_id", "users", ["assigned_dietitian_id"])
    op.create_index(
        "ix_users_assigned_health_counselor_id", "users", ["assigned_health_counselor_id"]
    )

    op.create_table(
        "appointments",
        _id_column(),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scheduled_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("ends_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(32), server_default="consultation", nullable=False),
        sa.Column("appointment_type_id", sa.Text(), nullable=True),
        sa.Column("appointment_mode_id", sa.Text(), nullable=True),
        sa.Column("mode_name", sa.Text(), nullable=True),
        sa.Column("location", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), server_default="scheduled", nullable=False),
        sa.Column("meeting_link", sa.Text(), nullable=True),
        sa.Column("meeting_provider", sa.String(32), nullable=True),
        sa.Column("meeting_details", sa.JSON(), nullable=True),
        sa.Column("calendar_event_ids", sa.JSON(), nullable=True),
        sa.Column("email_status", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.JSON(), nullable=False),
        sa.Column("cancelled_by", sa.JSON(), nullable=True),
        sa.Column("rescheduled_by", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"]),
        sa.CheckConstraint(
            "status IN ('scheduled', 'completed', 'cancelled', 'rescheduled')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint("duration BETWEEN 15 AND 180", name="appointments_duration_check"),
    )
    op.create_index(
        "idx_appointments_provider_schedule", "appointments", ["provider_id", "scheduled_at"]
    )
    op.create_index("idx_appointments_client", "appointments", ["client_id"])

    op.create_table(
        "appointment_events",
        _id_column(),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("performed_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("performed_by_role", sa.String(32), nullable=False),
        sa.Column("performed_by_name", sa.Text(), nullable=False),
        _timestamp("timestamp"),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "action IN ('created', 'cancelled', 'rescheduled', 'completed')",
            name="appointment_events_action_check",
        ),
        sa.UniqueConstraint(
            "appointment_id", "sequence", name="unique_appointment_event_sequence"
        ),
    )
    op.create_index(
        "idx_appointment_events_appointment", "appointment_events", ["appointment_id"]
    )

    op.create_table(
        "user_history",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("performed_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_user_history_user", "user_history", ["user_id", "created_at"])

    op.create_table(
        "push_tokens",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("fcm_token", sa.Text(), nullable=False),
        sa.Column("platform", sa.String(10), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _timestamp("last_used_at", nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "platform IN ('android', 'ios', 'web')", name="push_tokens_platform_check"
        ),
    )
    op.create_index("ix_push_tokens_user_id", "push_tokens", ["user_id"])
    op.create_index("ix_push_tokens_is_active", "push_tokens", ["is_active"])

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("icon", sa.Text(), nullable=True),
        sa.Column("click_action", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("success_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("failure_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        _timestamp("sent_at", nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "notification_type IN ('appointment_booked', 'appointment_cancelled', "
            "'appointment_rescheduled', 'appointment_completed', 'other')",
            name="notifications_type_check",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'delivered', 'failed')",
            name="notifications_status_check",
        ),
    )
    op.create_index("idx_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    """Drop the booking schema."""
    op.drop_index("idx_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_push_tokens_is_active", table_name="push_tokens")
    op.drop_index("ix_push_tokens_user_id", table_name="push_tokens")
    op.drop_table("push_tokens")
    op.drop_index("idx_user_history_user", table_name="user_history")
    op.drop_table("user_history")
    op.drop_index("idx_appointment_events_appointment", table_name="appointment_events")
    op.drop_table("appointment_events")
    op.drop_index("idx_appointments_client", table_name="appointments")
    op.drop_index("idx_appointments_provider_schedule", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_users_assigned_health_counselor_id", table_name="users")
    op.drop_index("ix_users_assigned_dietitian_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
