"""Database models."""

from app.models.appointments import appointment_events, appointments
from app.models.base import metadata
from app.models.notifications import notifications
from app.models.push_tokens import push_tokens
from app.models.user_history import user_history
from app.models.users import users

__all__ = [
    "appointment_events",
    "appointments",
    "metadata",
    "notifications",
    "push_tokens",
    "user_history",
    "users",
]
