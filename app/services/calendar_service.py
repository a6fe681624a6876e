"""Google Calendar sync using each user's stored OAuth tokens."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.users import users

logger = structlog.get_logger()

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.events"]


@dataclass
class AppointmentCalendarData:
    """Event content shared by both parties' calendars."""

    title: str
    description: str
    scheduled_at: datetime
    duration: int
    meeting_link: str | None = None
    location: str | None = None


@dataclass
class CalendarEventResult:
    """Outcome of one calendar call."""

    success: bool
    event_id: str | None = None
    error: str | None = None
    # The user never connected a calendar; nothing was attempted
    skipped: bool = False


def build_event_body(data: AppointmentCalendarData, attendee_email: str | None) -> dict[str, Any]:
    """Google Calendar event resource for an appointment."""
    end_time = data.scheduled_at + timedelta(minutes=data.duration)
    description = data.description
    event: dict[str, Any] = {
        "summary": data.title,
        "start": {"dateTime": data.scheduled_at.isoformat(), "timeZone": settings.clinic_timezone},
        "end": {"dateTime": end_time.isoformat(), "timeZone": settings.clinic_timezone},
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email", "minutes": 24 * 60},
                {"method": "popup", "minutes": 30},
            ],
        },
    }
    if data.meeting_link:
        description = f"{description}\n\nJoin meeting: {data.meeting_link}"
    if data.location:
        event["location"] = data.location
    if attendee_email:
        event["attendees"] = [{"email": attendee_email}]
    event["description"] = description
    return event


def _collect(party: str, result: CalendarEventResult, errors: list[str], skipped: list[str]) -> None:
    if result.skipped:
        skipped.append(party)
    elif not result.success:
        errors.append(f"{party.capitalize()} calendar: {result.error}")


class CalendarService:
    """Creates, moves and removes appointment events in Google Calendar."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def _credentials_for(self, user_id: UUID) -> Credentials | None:
        query = select(
            users.c.google_calendar_access_token,
            users.c.google_calendar_refresh_token,
        ).where(users.c.id == user_id)
        row = (await self.db.execute(query)).mappings().first()
        if not row or not row["google_calendar_access_token"]:
            return None
        return Credentials(
            token=row["google_calendar_access_token"],
            refresh_token=row["google_calendar_refresh_token"],
            token_uri=GOOGLE_TOKEN_URI,
            client_id=settings.google_client_id or None,
            client_secret=settings.google_client_secret or None,
            scopes=CALENDAR_SCOPES,
        )

    async def _store_refreshed_token(self, user_id: UUID, credentials: Credentials, previous: str) -> None:
        if credentials.token and credentials.token != previous:
            await self.db.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(google_calendar_access_token=credentials.token)
            )
            await self.db.commit()

    async def _call(self, user_id: UUID, operation: str, fn) -> CalendarEventResult:
        """Run a blocking Calendar API call for a user's primary calendar."""
        credentials = await self._credentials_for(user_id)
        if credentials is None:
            return CalendarEventResult(success=False, error="Google Calendar not connected", skipped=True)

        previous_token = credentials.token

        def run() -> Any:
            service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
            return fn(service.events())

        try:
            response = await asyncio.to_thread(run)
        except (HttpError, GoogleAuthError) as e:
            logger.warning("calendar_call_failed", operation=operation, user_id=str(user_id), error=str(e))
            return CalendarEventResult(success=False, error=str(e))

        await self._store_refreshed_token(user_id, credentials, previous_token)
        event_id = response.get("id") if isinstance(response, dict) else None
        return CalendarEventResult(success=True, event_id=event_id)

    async def create_calendar_event(
        self, user_id: UUID, data: AppointmentCalendarData, attendee_email: str | None = None
    ) -> CalendarEventResult:
        """Create an event in the user's primary calendar."""
        body = build_event_body(data, attendee_email)
        return await self._call(
            user_id,
            "create",
            lambda events: events.insert(calendarId="primary", body=body, sendUpdates="all").execute(),
        )

    async def update_calendar_event(
        self, user_id: UUID, event_id: str, data: AppointmentCalendarData
    ) -> CalendarEventResult:
        """Move an existing event to the appointment's new time."""
        body = build_event_body(data, attendee_email=None)
        body.pop("attendees", None)
        return await self._call(
            user_id,
            "update",
            lambda events: events.patch(
                calendarId="primary", eventId=event_id, body=body, sendUpdates="all"
            ).execute(),
        )

    async def delete_calendar_event(self, user_id: UUID, event_id: str) -> CalendarEventResult:
        """Delete an event from the user's primary calendar."""
        return await self._call(
            user_id,
            "delete",
            lambda events: events.delete(
                calendarId="primary", eventId=event_id, sendUpdates="all"
            ).execute(),
        )

    async def sync_appointment_to_calendars(
        self,
        provider_id: UUID,
        client_id: UUID,
        data: AppointmentCalendarData,
        provider_email: str | None,
        client_email: str | None,
    ) -> dict[str, Any]:
        """
        Add the appointment to both parties' calendars.

        Each party's calendar gets the other party as attendee.

        Returns:
            ``{"provider_event_id", "client_event_id", "errors", "skipped"}``;
            parties without a connected calendar are listed in ``skipped``
        """
        errors: list[str] = []
        skipped: list[str] = []

        provider_result = await self.create_calendar_event(provider_id, data, client_email)
        _collect("provider", provider_result, errors, skipped)

        client_result = await self.create_calendar_event(client_id, data, provider_email)
        _collect("client", client_result, errors, skipped)

        return {
            "provider_event_id": provider_result.event_id,
            "client_event_id": client_result.event_id,
            "errors": errors,
            "skipped": skipped,
        }

    async def update_calendar_events(
        self,
        provider_id: UUID,
        client_id: UUID,
        event_ids: dict[str, Any] | None,
        data: AppointmentCalendarData,
    ) -> dict[str, Any]:
        """Move both parties' events; parties without an event are skipped."""
        errors: list[str] = []
        skipped: list[str] = []
        event_ids = event_ids or {}
        for party, user_id in (("provider", provider_id), ("client", client_id)):
            event_id = event_ids.get(party)
            if not event_id:
                continue
            result = await self.update_calendar_event(user_id, event_id, data)
            _collect(party, result, errors, skipped)
        return {"errors": errors, "skipped": skipped}

    async def remove_appointment_from_calendars(
        self,
        provider_id: UUID,
        client_id: UUID,
        event_ids: dict[str, Any] | None,
    ) -> dict[str, Any]:
        """Delete both parties' events."""
        errors: list[str] = []
        skipped: list[str] = []
        event_ids = event_ids or {}
        for party, user_id in (("provider", provider_id), ("client", client_id)):
            event_id = event_ids.get(party)
            if not event_id:
                continue
            result = await self.delete_calendar_event(user_id, event_id)
            _collect(party, result, errors, skipped)
        return {"errors": errors, "skipped": skipped}
