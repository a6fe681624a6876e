"""Best-effort side effects run after an appointment change is committed.

Each step is independent: a failure or timeout in one is logged and the
remaining steps still run. Nothing here can fail the request that
triggered it.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.realtime import RealtimeHub, get_realtime_hub
from app.models.appointments import appointments
from app.models.base import utcnow
from app.schemas.notifications import PushPayload
from app.services.calendar_service import AppointmentCalendarData, CalendarService
from app.services.email_service import AppointmentEmailData, AppointmentEmailService
from app.services.history_service import HistoryService
from app.services.meeting_service import MeetingConfig, MeetingLinkService, requires_meeting_link
from app.services.notification_service import NotificationService, app_link
from app.services.user_service import UserDirectory

logger = structlog.get_logger()


class BookingEvent(str, Enum):
    """What happened to the appointment."""

    BOOKED = "appointment_booked"
    CANCELLED = "appointment_cancelled"
    RESCHEDULED = "appointment_rescheduled"
    COMPLETED = "appointment_completed"


ALL_EVENTS = frozenset(BookingEvent)
CHANGE_EVENTS = frozenset({BookingEvent.BOOKED, BookingEvent.CANCELLED, BookingEvent.RESCHEDULED})


@dataclass
class EnrichmentContext:
    """Inputs shared by every step; ``appointment`` is updated as steps attach artifacts."""

    db: AsyncSession
    event: BookingEvent
    appointment: dict[str, Any]
    provider: dict[str, Any]
    client: dict[str, Any]
    performer: dict[str, Any]
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def appointment_id(self) -> UUID:
        return self.appointment["id"]


@dataclass
class EnrichmentResult:
    """Outcome of one step."""

    step: str
    ok: bool
    value: Any = None
    error: str | None = None
    skipped: bool = False


class EnrichmentError(Exception):
    """A step completed but its collaborator reported failure."""


class EnrichmentStep(Protocol):
    """One side effect."""

    name: str
    events: frozenset[BookingEvent]

    async def run(self, ctx: EnrichmentContext) -> Any: ...


async def patch_appointment(ctx: EnrichmentContext, **values: Any) -> None:
    """Update only the given artifact columns and commit."""
    await ctx.db.execute(
        update(appointments)
        .where(appointments.c.id == ctx.appointment_id)
        .values(**values, updated_at=utcnow())
    )
    await ctx.db.commit()
    ctx.appointment.update(values)


def _type_label(appointment: dict[str, Any]) -> str:
    return str(appointment.get("type") or "consultation").replace("_", " ").title()


class MeetingLinkStep:
    """Create, move or delete the virtual meeting."""

    name = "meeting_link"
    events = CHANGE_EVENTS

    def __init__(self, meetings: MeetingLinkService):
        self.meetings = meetings

    async def run(self, ctx: EnrichmentContext) -> Any:
        appointment = ctx.appointment

        if ctx.event == BookingEvent.CANCELLED:
            result = await self.meetings.delete_meeting(appointment.get("meeting_details"))
        elif ctx.event == BookingEvent.RESCHEDULED:
            result = await self.meetings.update_meeting(
                appointment.get("meeting_details"), appointment["scheduled_at"], appointment["duration"]
            )
        else:
            if not requires_meeting_link(appointment.get("mode_name"), appointment.get("type")):
                return None
            config = MeetingConfig(
                topic=f"{_type_label(appointment)} with {UserDirectory.display_name(ctx.client)}",
                scheduled_at=appointment["scheduled_at"],
                duration=appointment["duration"],
                host_email=ctx.provider["email"],
                description=appointment.get("notes"),
                attendees=[
                    {"email": ctx.client["email"], "name": UserDirectory.display_name(ctx.client)},
                    {"email": ctx.provider["email"], "name": UserDirectory.display_name(ctx.provider)},
                ],
            )
            result = await self.meetings.generate_meeting_link(appointment.get("mode_name"), config)
            if result.success and result.meeting_link:
                await patch_appointment(
                    ctx,
                    meeting_link=result.meeting_link,
                    meeting_provider=result.provider,
                    meeting_details=result.meeting_details,
                )

        if not result.success:
            raise EnrichmentError(result.error or "meeting provider failed")
        return result.meeting_link


class ConfirmationEmailStep:
    """Email both parties and record per-recipient outcome."""

    name = "email"
    events = CHANGE_EVENTS

    def __init__(self, mailer: AppointmentEmailService):
        self.mailer = mailer

    async def run(self, ctx: EnrichmentContext) -> Any:
        appointment = ctx.appointment
        data = AppointmentEmailData(
            appointment_id=str(ctx.appointment_id),
            client_name=UserDirectory.display_name(ctx.client),
            client_email=ctx.client["email"],
            provider_name=UserDirectory.display_name(ctx.provider),
            provider_email=ctx.provider["email"],
            scheduled_at=appointment["scheduled_at"],
            duration=appointment["duration"],
            appointment_type=str(appointment["type"]),
            appointment_mode=appointment.get("mode_name"),
            meeting_link=appointment.get("meeting_link"),
            location=appointment.get("location"),
            notes=appointment.get("notes"),
            performer_name=UserDirectory.display_name(ctx.performer),
            reason=ctx.details.get("reason"),
            previous_scheduled_at=ctx.details.get("previous_scheduled_at"),
        )

        if ctx.event == BookingEvent.CANCELLED:
            result = await self.mailer.send_appointment_cancellation_email(data)
        elif ctx.event == BookingEvent.RESCHEDULED:
            result = await self.mailer.send_appointment_reschedule_email(data)
        else:
            result = await self.mailer.send_appointment_confirmation_email(data)

        await patch_appointment(
            ctx,
            email_status={
                "event": ctx.event.value,
                "provider": bool(result.get("provider")),
                "client": bool(result.get("client")),
                "sentAt": utcnow().isoformat(),
            },
        )
        if not result.get("success"):
            raise EnrichmentError("; ".join(result.get("errors") or ["email failed"]))
        return result


class CalendarSyncStep:
    """Mirror the appointment into both parties' Google calendars."""

    name = "calendar_sync"
    events = CHANGE_EVENTS

    def __init__(self, calendar_factory: Callable[[AsyncSession], CalendarService] = CalendarService):
        self.calendar_factory = calendar_factory

    async def run(self, ctx: EnrichmentContext) -> Any:
        calendar = self.calendar_factory(ctx.db)
        appointment = ctx.appointment
        provider_id = appointment["provider_id"]
        client_id = appointment["client_id"]
        event_ids = appointment.get("calendar_event_ids")

        if ctx.event == BookingEvent.CANCELLED:
            result = await calendar.remove_appointment_from_calendars(provider_id, client_id, event_ids)
        else:
            data = AppointmentCalendarData(
                title=f"{_type_label(appointment)}: "
                f"{UserDirectory.display_name(ctx.provider)} & {UserDirectory.display_name(ctx.client)}",
                description=appointment.get("notes") or f"{_type_label(appointment)} appointment",
                scheduled_at=appointment["scheduled_at"],
                duration=appointment["duration"],
                meeting_link=appointment.get("meeting_link"),
                location=appointment.get("location"),
            )
            if ctx.event == BookingEvent.RESCHEDULED:
                result = await calendar.update_calendar_events(provider_id, client_id, event_ids, data)
            else:
                result = await calendar.sync_appointment_to_calendars(
                    provider_id,
                    client_id,
                    data,
                    ctx.provider.get("email"),
                    ctx.client.get("email"),
                )
                ids = {
                    "provider": result.get("provider_event_id"),
                    "client": result.get("client_event_id"),
                }
                if any(ids.values()):
                    await patch_appointment(ctx, calendar_event_ids=ids)

        if result.get("errors"):
            raise EnrichmentError("; ".join(result["errors"]))
        if ctx.event == BookingEvent.BOOKED and not any(
            (result.get("provider_event_id"), result.get("client_event_id"))
        ):
            # Neither party has a calendar connected
            return None
        return result


class ClientHistoryStep:
    """Record the change in the client's activity history."""

    name = "client_history"
    events = ALL_EVENTS

    _VERBS = {
        BookingEvent.BOOKED: "booked",
        BookingEvent.CANCELLED: "cancelled",
        BookingEvent.RESCHEDULED: "rescheduled",
        BookingEvent.COMPLETED: "completed",
    }

    async def run(self, ctx: EnrichmentContext) -> Any:
        appointment = ctx.appointment
        when = appointment["scheduled_at"]
        description = (
            f"{_type_label(appointment)} with {UserDirectory.display_name(ctx.provider)} "
            f"{self._VERBS[ctx.event]} for {when:%Y-%m-%d %H:%M} UTC"
        )
        return await HistoryService.log_history(
            ctx.db,
            user_id=appointment["client_id"],
            action=ctx.event.value,
            category="appointment",
            description=description,
            performed_by_id=ctx.performer["id"],
            metadata={
                "appointmentId": str(ctx.appointment_id),
                "providerId": str(appointment["provider_id"]),
                "scheduledAt": when.isoformat(),
                "duration": appointment["duration"],
                "type": str(appointment["type"]),
                "performedByRole": ctx.performer["role"],
            },
        )


class RealtimePushStep:
    """Tell live sessions of both parties to refresh."""

    name = "realtime_push"
    events = ALL_EVENTS

    def __init__(self, hub: RealtimeHub):
        self.hub = hub

    async def run(self, ctx: EnrichmentContext) -> Any:
        appointment = ctx.appointment
        payload = {
            "appointmentId": str(ctx.appointment_id),
            "providerId": str(appointment["provider_id"]),
            "clientId": str(appointment["client_id"]),
            "scheduledAt": appointment["scheduled_at"].isoformat(),
            "duration": appointment["duration"],
            "status": str(appointment["status"]),
        }
        if "previous_scheduled_at" in ctx.details:
            payload["previousScheduledAt"] = ctx.details["previous_scheduled_at"].isoformat()

        delivered = 0
        for user_id in (appointment["provider_id"], appointment["client_id"]):
            delivered += await self.hub.send_to_user(str(user_id), ctx.event.value, payload)
        return delivered


class MobileNotificationStep:
    """Push a device notification to both parties."""

    name = "mobile_notification"
    events = CHANGE_EVENTS

    _TITLES = {
        BookingEvent.BOOKED: "Appointment Booked",
        BookingEvent.CANCELLED: "Appointment Cancelled",
        BookingEvent.RESCHEDULED: "Appointment Rescheduled",
    }

    def _body(self, ctx: EnrichmentContext, other: dict[str, Any]) -> str:
        when = ctx.appointment["scheduled_at"]
        label = _type_label(ctx.appointment)
        name = UserDirectory.display_name(other)
        if ctx.event == BookingEvent.CANCELLED:
            return f"Your {label} with {name} on {when:%b %d at %H:%M} UTC was cancelled"
        if ctx.event == BookingEvent.RESCHEDULED:
            return f"Your {label} with {name} moved to {when:%b %d at %H:%M} UTC"
        return f"{label} with {name} on {when:%b %d at %H:%M} UTC"

    async def run(self, ctx: EnrichmentContext) -> Any:
        results = {}
        for party, recipient, other in (
            ("provider", ctx.provider, ctx.client),
            ("client", ctx.client, ctx.provider),
        ):
            payload = PushPayload(
                title=self._TITLES[ctx.event],
                body=self._body(ctx, other),
                icon=settings.push_default_icon,
                data={
                    "type": ctx.event.value,
                    "appointmentId": str(ctx.appointment_id),
                    "scheduledAt": ctx.appointment["scheduled_at"].isoformat(),
                },
                click_action=app_link(f"/appointments/{ctx.appointment_id}"),
                notification_type=ctx.event.value,
            )
            results[party] = await NotificationService.send_notification_to_user(
                ctx.db, recipient["id"], payload
            )
        return results


class EnrichmentOrchestrator:
    """Runs steps in order, isolating each from the others' failures."""

    def __init__(self, steps: Sequence[EnrichmentStep], timeout: float):
        """Initialize with ordered steps and a per-step timeout in seconds."""
        self.steps = list(steps)
        self.timeout = timeout

    async def run(self, ctx: EnrichmentContext) -> list[EnrichmentResult]:
        """
        Run every step that applies to the event.

        Args:
            ctx: Committed appointment and the parties involved

        Returns:
            One result per applicable step; never raises
        """
        results = []
        for step in self.steps:
            if ctx.event not in step.events:
                continue
            try:
                value = await asyncio.wait_for(step.run(ctx), timeout=self.timeout)
                results.append(
                    EnrichmentResult(step=step.name, ok=True, value=value, skipped=value is None)
                )
            except Exception as e:
                error = f"timed out after {self.timeout}s" if isinstance(e, TimeoutError) else str(e)
                logger.warning(
                    "enrichment_step_failed",
                    step=step.name,
                    booking_event=ctx.event.value,
                    appointment_id=str(ctx.appointment_id),
                    error=error,
                )
                results.append(EnrichmentResult(step=step.name, ok=False, error=error))
                try:
                    await ctx.db.rollback()
                except SQLAlchemyError as rollback_error:
                    logger.warning("enrichment_rollback_failed", error=str(rollback_error))

        logger.info(
            "enrichment_completed",
            booking_event=ctx.event.value,
            appointment_id=str(ctx.appointment_id),
            failed=[r.step for r in results if not r.ok],
        )
        return results


def build_default_orchestrator(hub: RealtimeHub | None = None) -> EnrichmentOrchestrator:
    """Orchestrator wired to the real collaborators."""
    return EnrichmentOrchestrator(
        steps=[
            MeetingLinkStep(MeetingLinkService()),
            ConfirmationEmailStep(AppointmentEmailService()),
            CalendarSyncStep(),
            ClientHistoryStep(),
            RealtimePushStep(hub or get_realtime_hub()),
            MobileNotificationStep(),
        ],
        timeout=settings.enrichment_step_timeout,
    )
