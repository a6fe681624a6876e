"""Virtual meeting link generation (Zoom and Google Meet)."""

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import structlog

from app.config import settings

logger = structlog.get_logger()

ZOOM_OAUTH_URL = "https://zoom.us/oauth/token"
ZOOM_API_URL = "https://api.zoom.us/v2"

VIDEO_MODE_KEYWORDS = ("zoom", "google", "meet", "video")


@dataclass
class MeetingConfig:
    """What the meeting provider needs to know about the appointment."""

    topic: str
    scheduled_at: datetime
    duration: int
    host_email: str
    description: str | None = None
    attendees: list[dict[str, str]] = field(default_factory=list)


@dataclass
class MeetingLinkResult:
    """Outcome of a meeting link request."""

    success: bool
    meeting_link: str | None = None
    meeting_details: dict[str, Any] | None = None
    error: str | None = None

    @property
    def provider(self) -> str | None:
        """Meeting provider name, when a meeting was created."""
        return (self.meeting_details or {}).get("provider")


def requires_meeting_link(mode_name: str | None, appointment_type: str | None = None) -> bool:
    """Check whether an appointment mode or type needs a virtual meeting."""
    mode = (mode_name or "").lower()
    if any(keyword in mode for keyword in VIDEO_MODE_KEYWORDS):
        return True
    return appointment_type == "video_consultation"


def resolve_meeting_provider(mode_name: str | None) -> str:
    """Pick ``zoom`` or ``google_meet`` for a mode; bare video modes use the default."""
    mode = (mode_name or "").lower()
    if "zoom" in mode:
        return "zoom"
    if "google" in mode or "meet" in mode:
        return "google_meet"
    return settings.default_video_provider


def generate_meet_code() -> str:
    """Random ``abc-defg-hij`` style Meet code."""
    letters = string.ascii_lowercase

    def segment(length: int) -> str:
        return "".join(secrets.choice(letters) for _ in range(length))

    return f"{segment(3)}-{segment(4)}-{segment(3)}"


class MeetingLinkService:
    """Creates, moves and removes virtual meetings for appointments."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        """Initialize service with an optional shared HTTP client."""
        self._client = http_client
        self.timeout = timeout

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _zoom_access_token(self) -> str:
        """Fetch a server-to-server OAuth token from Zoom."""
        response = await self._request(
            "POST",
            ZOOM_OAUTH_URL,
            params={"grant_type": "account_credentials", "account_id": settings.zoom_account_id},
            auth=(settings.zoom_client_id, settings.zoom_client_secret),
        )
        response.raise_for_status()
        return response.json()["access_token"]

    async def generate_meeting_link(self, mode_name: str | None, config: MeetingConfig) -> MeetingLinkResult:
        """
        Generate a meeting link for an appointment mode.

        Args:
            mode_name: Appointment mode, e.g. ``Zoom`` or ``Google Meet``
            config: Topic, schedule, host and attendees

        Returns:
            Result with the join link and provider metadata; never raises
        """
        provider = resolve_meeting_provider(mode_name)
        if provider == "zoom":
            return await self._create_zoom_meeting(config)
        return self._create_google_meet_link()

    async def _create_zoom_meeting(self, config: MeetingConfig) -> MeetingLinkResult:
        if not settings.zoom_configured:
            return MeetingLinkResult(success=False, error="Zoom is not configured")

        try:
            token = await self._zoom_access_token()
            response = await self._request(
                "POST",
                f"{ZOOM_API_URL}/users/{config.host_email}/meetings",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "topic": config.topic,
                    "type": 2,
                    "start_time": config.scheduled_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "duration": config.duration,
                    "timezone": "UTC",
                    "agenda": config.description or f"Meeting: {config.topic}",
                    "settings": {
                        "join_before_host": False,
                        "waiting_room": True,
                        "meeting_invitees": [{"email": a["email"]} for a in config.attendees],
                    },
                },
            )
            response.raise_for_status()
            meeting = response.json()
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("zoom_meeting_failed", error=str(e))
            return MeetingLinkResult(success=False, error=f"Failed to create Zoom meeting: {e}")

        return MeetingLinkResult(
            success=True,
            meeting_link=meeting.get("join_url"),
            meeting_details={
                "meetingId": str(meeting.get("id")),
                "meetingUuid": meeting.get("uuid"),
                "joinUrl": meeting.get("join_url"),
                "startUrl": meeting.get("start_url"),
                "password": meeting.get("password"),
                "hostEmail": meeting.get("host_email"),
                "provider": "zoom",
            },
        )

    def _create_google_meet_link(self) -> MeetingLinkResult:
        code = generate_meet_code()
        link = f"https://meet.google.com/{code}"
        return MeetingLinkResult(
            success=True,
            meeting_link=link,
            meeting_details={"meetingId": code, "joinUrl": link, "provider": "google_meet"},
        )

    async def update_meeting(
        self, meeting_details: dict[str, Any] | None, scheduled_at: datetime, duration: int
    ) -> MeetingLinkResult:
        """Move an existing meeting; Meet links need no update."""
        details = meeting_details or {}
        if details.get("provider") != "zoom" or not details.get("meetingId"):
            return MeetingLinkResult(success=True, meeting_details=meeting_details)

        try:
            token = await self._zoom_access_token()
            response = await self._request(
                "PATCH",
                f"{ZOOM_API_URL}/meetings/{details['meetingId']}",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "start_time": scheduled_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "duration": duration,
                },
            )
            response.raise_for_status()
        except (httpx.HTTPError, KeyError) as e:
            logger.warning("zoom_meeting_update_failed", error=str(e))
            return MeetingLinkResult(success=False, error=f"Failed to update Zoom meeting: {e}")
        return MeetingLinkResult(success=True, meeting_details=meeting_details)

    async def delete_meeting(self, meeting_details: dict[str, Any] | None) -> MeetingLinkResult:
        """Delete a Zoom meeting; Meet links expire on their own."""
        details = meeting_details or {}
        if details.get("provider") != "zoom" or not details.get("meetingId"):
            return MeetingLinkResult(success=True)

        try:
            token = await self._zoom_access_token()
            response = await self._request(
                "DELETE",
                f"{ZOOM_API_URL}/meetings/{details['meetingId']}",
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except (httpx.HTTPError, KeyError) as e:
            logger.warning("zoom_meeting_delete_failed", error=str(e))
            return MeetingLinkResult(success=False, error=f"Failed to delete Zoom meeting: {e}")
        return MeetingLinkResult(success=True)
