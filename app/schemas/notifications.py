"""Push notification schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PushTokenRegister(BaseModel):
    """Schema for registering FCM token."""

    fcm_token: str = Field(..., description="Firebase Cloud Messaging token")
    platform: str = Field(
        ...,
        description="Platform type",
        pattern="^(android|ios|web)$",
    )


class PushTokenResponse(BaseModel):
    """Schema for push token response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    fcm_token: str
    platform: str
    is_active: bool
    last_used_at: datetime | None
    created_at: datetime


class PushPayload(BaseModel):
    """Notification shown on a user's devices."""

    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=500)
    icon: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    click_action: str | None = None
    notification_type: str = "other"
