"""Tests for post-commit appointment side effects."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.models.appointments import appointments
from app.models.user_history import user_history
from app.schemas.appointments import AppointmentCreate
from app.services import enrichment
from app.services.appointment_service import AppointmentService
from app.services.calendar_service import AppointmentCalendarData, CalendarService
from app.services.email_service import AppointmentEmailData, render_email
from app.services.enrichment import (
    BookingEvent,
    CalendarSyncStep,
    ClientHistoryStep,
    ConfirmationEmailStep,
    EnrichmentContext,
    EnrichmentOrchestrator,
    MeetingLinkStep,
    MobileNotificationStep,
)
from app.services.meeting_service import (
    MeetingConfig,
    MeetingLinkResult,
    MeetingLinkService,
    generate_meet_code,
    requires_meeting_link,
    resolve_meeting_provider,
)

START = datetime(2030, 6, 3, 10, 0, tzinfo=UTC)


@pytest.fixture
async def appointment_row(db_session, dietitian, assigned_client) -> dict:
    """A committed video appointment between Dana and Cleo."""
    appointment_id = uuid4()
    await db_session.execute(
        insert(appointments).values(
            id=appointment_id,
            provider_id=dietitian["id"],
            client_id=assigned_client["id"],
            scheduled_at=START,
            ends_at=START + timedelta(minutes=30),
            duration=30,
            type="consultation",
            mode_name="Google Meet",
            status="scheduled",
            created_by={"userId": str(dietitian["id"]), "role": "dietitian", "name": "Dana Test"},
        )
    )
    await db_session.commit()
    row = await db_session.execute(select(appointments).where(appointments.c.id == appointment_id))
    return dict(row.mappings().first())


def make_context(db_session, row, dietitian, client, event=BookingEvent.BOOKED, **details):
    return EnrichmentContext(
        db=db_session,
        event=event,
        appointment=row,
        provider=dietitian,
        client=client,
        performer=dietitian,
        details=details,
    )


async def _stored(db_session, appointment_id) -> dict:
    result = await db_session.execute(select(appointments).where(appointments.c.id == appointment_id))
    return dict(result.mappings().first())


class RecordingStep:
    """Fake step recording calls; optionally fails or stalls."""

    def __init__(self, name, events=frozenset(BookingEvent), error=None, delay=0.0, value="done"):
        self.name = name
        self.events = events
        self.error = error
        self.delay = delay
        self.value = value
        self.calls = 0

    async def run(self, ctx):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.value


# Orchestrator


async def test_failing_step_does_not_stop_later_steps(
    db_session, appointment_row, dietitian, assigned_client
):
    first = RecordingStep("first", error=RuntimeError("smtp down"))
    second = RecordingStep("second")
    orchestrator = EnrichmentOrchestrator([first, second], timeout=1)

    results = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert [r.step for r in results] == ["first", "second"]
    assert results[0].ok is False
    assert results[0].error == "smtp down"
    assert results[1].ok is True
    assert second.calls == 1


async def test_slow_step_times_out(db_session, appointment_row, dietitian, assigned_client):
    slow = RecordingStep("slow", delay=1.0)
    after = RecordingStep("after")
    orchestrator = EnrichmentOrchestrator([slow, after], timeout=0.05)

    results = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert results[0].ok is False
    assert results[0].error == "timed out after 0.05s"
    assert results[1].ok is True


async def test_steps_only_run_for_their_events(
    db_session, appointment_row, dietitian, assigned_client
):
    booking_only = RecordingStep("booking_only", events=frozenset({BookingEvent.BOOKED}))
    always = RecordingStep("always")
    orchestrator = EnrichmentOrchestrator([booking_only, always], timeout=1)

    results = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client, BookingEvent.COMPLETED)
    )

    assert [r.step for r in results] == ["always"]
    assert booking_only.calls == 0


async def test_step_returning_none_is_reported_skipped(
    db_session, appointment_row, dietitian, assigned_client
):
    orchestrator = EnrichmentOrchestrator([RecordingStep("noop", value=None)], timeout=1)

    [result] = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert result.ok is True
    assert result.skipped is True


async def test_step_failure_is_logged_with_booking_event(
    db_session, appointment_row, dietitian, assigned_client, monkeypatch
):
    logger = MagicMock()
    monkeypatch.setattr(enrichment, "logger", logger)
    orchestrator = EnrichmentOrchestrator(
        [RecordingStep("first", error=RuntimeError("smtp down"))], timeout=1
    )

    await orchestrator.run(make_context(db_session, appointment_row, dietitian, assigned_client))

    failed = logger.warning.call_args
    assert failed.args == ("enrichment_step_failed",)
    assert failed.kwargs["booking_event"] == "appointment_booked"
    assert failed.kwargs["step"] == "first"
    completed = logger.info.call_args
    assert completed.args == ("enrichment_completed",)
    assert completed.kwargs["failed"] == ["first"]
    assert "event" not in failed.kwargs
    assert "event" not in completed.kwargs


async def test_unreadable_context_skips_side_effects(
    db_session, admin, dietitian, assigned_client, monkeypatch
):
    """A read failure after commit drops the side effects, not the booking."""
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock()
    service = AppointmentService(db_session, orchestrator=orchestrator)
    get_users = service.directory.get_users
    calls = []

    async def flaky_get_users(user_ids):
        calls.append(user_ids)
        if len(calls) == 1:
            raise OperationalError("SELECT users", {}, Exception("connection reset"))
        return await get_users(user_ids)

    monkeypatch.setattr(service.directory, "get_users", flaky_get_users)
    data = AppointmentCreate.model_validate(
        {
            "dietitianId": str(dietitian["id"]),
            "clientId": str(assigned_client["id"]),
            "scheduledAt": START.isoformat(),
        }
    )

    response = await service.create_appointment(admin, data)

    assert response.status == "scheduled"
    orchestrator.run.assert_not_awaited()
    stored = await _stored(db_session, response.id)
    assert stored["status"] == "scheduled"


# Steps


async def test_meeting_step_stores_link(db_session, appointment_row, dietitian, assigned_client):
    meetings = MagicMock()
    meetings.generate_meeting_link = AsyncMock(
        return_value=MeetingLinkResult(
            success=True,
            meeting_link="https://meet.google.com/abc-defg-hij",
            meeting_details={"meetingId": "abc-defg-hij", "provider": "google_meet"},
        )
    )
    ctx = make_context(db_session, appointment_row, dietitian, assigned_client)

    link = await MeetingLinkStep(meetings).run(ctx)

    assert link == "https://meet.google.com/abc-defg-hij"
    config = meetings.generate_meeting_link.call_args.args[1]
    assert config.host_email == dietitian["email"]
    assert config.topic == "Consultation with Cleo Test"
    stored = await _stored(db_session, appointment_row["id"])
    assert stored["meeting_link"] == link
    assert stored["meeting_provider"] == "google_meet"


async def test_meeting_step_skips_in_person(db_session, appointment_row, dietitian, assigned_client):
    appointment_row["mode_name"] = "In person"
    meetings = MagicMock()
    meetings.generate_meeting_link = AsyncMock()

    result = await MeetingLinkStep(meetings).run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert result is None
    meetings.generate_meeting_link.assert_not_called()


async def test_meeting_step_failure_raises_for_orchestrator(
    db_session, appointment_row, dietitian, assigned_client
):
    meetings = MagicMock()
    meetings.generate_meeting_link = AsyncMock(
        return_value=MeetingLinkResult(success=False, error="Zoom is not configured")
    )
    orchestrator = EnrichmentOrchestrator([MeetingLinkStep(meetings)], timeout=1)

    [result] = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert result.ok is False
    assert result.error == "Zoom is not configured"
    stored = await _stored(db_session, appointment_row["id"])
    assert stored["meeting_link"] is None


async def test_email_step_records_per_recipient_status(
    db_session, appointment_row, dietitian, assigned_client
):
    mailer = MagicMock()
    mailer.send_appointment_confirmation_email = AsyncMock(
        return_value={
            "success": False,
            "errors": ["Client email failed: bounced"],
            "client": False,
            "provider": True,
        }
    )
    orchestrator = EnrichmentOrchestrator([ConfirmationEmailStep(mailer)], timeout=1)

    [result] = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert result.ok is False
    stored = await _stored(db_session, appointment_row["id"])
    assert stored["email_status"]["provider"] is True
    assert stored["email_status"]["client"] is False
    assert stored["email_status"]["event"] == "appointment_booked"


async def test_email_step_uses_cancellation_template(
    db_session, appointment_row, dietitian, assigned_client
):
    mailer = MagicMock()
    mailer.send_appointment_cancellation_email = AsyncMock(
        return_value={"success": True, "errors": [], "client": True, "provider": True}
    )
    ctx = make_context(
        db_session, appointment_row, dietitian, assigned_client, BookingEvent.CANCELLED, reason="Sick"
    )

    await ConfirmationEmailStep(mailer).run(ctx)

    data = mailer.send_appointment_cancellation_email.call_args.args[0]
    assert data.reason == "Sick"
    assert data.client_email == assigned_client["email"]


async def test_calendar_step_stores_event_ids(db_session, appointment_row, dietitian, assigned_client):
    calendar = MagicMock()
    calendar.sync_appointment_to_calendars = AsyncMock(
        return_value={"provider_event_id": "evt-provider", "client_event_id": None, "errors": []}
    )
    step = CalendarSyncStep(calendar_factory=lambda db: calendar)

    await step.run(make_context(db_session, appointment_row, dietitian, assigned_client))

    stored = await _stored(db_session, appointment_row["id"])
    assert stored["calendar_event_ids"] == {"provider": "evt-provider", "client": None}


async def test_calendar_step_removes_events_on_cancel(
    db_session, appointment_row, dietitian, assigned_client
):
    appointment_row["calendar_event_ids"] = {"provider": "evt-provider"}
    calendar = MagicMock()
    calendar.remove_appointment_from_calendars = AsyncMock(return_value={"errors": []})
    step = CalendarSyncStep(calendar_factory=lambda db: calendar)

    await step.run(
        make_context(db_session, appointment_row, dietitian, assigned_client, BookingEvent.CANCELLED)
    )

    calendar.remove_appointment_from_calendars.assert_awaited_once_with(
        dietitian["id"], assigned_client["id"], {"provider": "evt-provider"}
    )


async def test_unconnected_calendars_are_skipped(db_session, dietitian, assigned_client):
    data = AppointmentCalendarData(
        title="Consultation: Dana Test & Cleo Test",
        description="Consultation appointment",
        scheduled_at=START,
        duration=30,
    )

    result = await CalendarService(db_session).sync_appointment_to_calendars(
        dietitian["id"], assigned_client["id"], data, dietitian["email"], assigned_client["email"]
    )

    assert result["errors"] == []
    assert result["skipped"] == ["provider", "client"]
    assert result["provider_event_id"] is None


async def test_calendar_step_without_connected_calendars_is_skipped(
    db_session, appointment_row, dietitian, assigned_client
):
    orchestrator = EnrichmentOrchestrator([CalendarSyncStep()], timeout=1)

    [result] = await orchestrator.run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    assert result.ok is True
    assert result.skipped is True
    stored = await _stored(db_session, appointment_row["id"])
    assert stored["calendar_event_ids"] is None


async def test_notification_link_uses_app_origin(
    db_session, appointment_row, dietitian, assigned_client, monkeypatch
):
    monkeypatch.setattr(settings, "app_base_url", "https://app.nutricare.example")
    send = AsyncMock(return_value={"success": True})
    monkeypatch.setattr(enrichment.NotificationService, "send_notification_to_user", send)

    await MobileNotificationStep().run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    payload = send.call_args.args[2]
    assert payload.click_action == f"https://app.nutricare.example/appointments/{appointment_row['id']}"
    assert [call.args[1] for call in send.call_args_list] == [dietitian["id"], assigned_client["id"]]


async def test_history_step_logs_client_activity(
    db_session, appointment_row, dietitian, assigned_client
):
    await ClientHistoryStep().run(
        make_context(db_session, appointment_row, dietitian, assigned_client)
    )

    result = await db_session.execute(
        select(user_history).where(user_history.c.user_id == assigned_client["id"])
    )
    entry = result.mappings().one()
    assert entry["action"] == "appointment_booked"
    assert entry["category"] == "appointment"
    assert entry["performed_by_id"] == dietitian["id"]
    assert entry["description"] == "Consultation with Dana Test booked for 2030-06-03 10:00 UTC"


# Meeting links


@pytest.mark.parametrize(
    ("mode", "appointment_type", "expected"),
    [
        ("Zoom", "consultation", True),
        ("Google Meet", "consultation", True),
        ("Video call", "consultation", True),
        ("In person", "video_consultation", True),
        ("In person", "consultation", False),
        (None, None, False),
    ],
)
def test_requires_meeting_link(mode, appointment_type, expected):
    assert requires_meeting_link(mode, appointment_type) is expected


def test_resolve_meeting_provider(monkeypatch):
    monkeypatch.setattr(settings, "default_video_provider", "google_meet")

    assert resolve_meeting_provider("Zoom Meeting") == "zoom"
    assert resolve_meeting_provider("Google Meet") == "google_meet"
    assert resolve_meeting_provider("Video") == "google_meet"


def test_meet_code_format():
    code = generate_meet_code()
    parts = code.split("-")
    assert [len(p) for p in parts] == [3, 4, 3]
    assert code.replace("-", "").isalpha()


def _config() -> MeetingConfig:
    return MeetingConfig(
        topic="Consultation with Cleo Test",
        scheduled_at=START,
        duration=30,
        host_email="dana@example.com",
        attendees=[{"email": "cleo@example.com", "name": "Cleo Test"}],
    )


@pytest.fixture
def zoom_settings(monkeypatch):
    monkeypatch.setattr(settings, "zoom_account_id", "acct")
    monkeypatch.setattr(settings, "zoom_client_id", "client")
    monkeypatch.setattr(settings, "zoom_client_secret", "secret")


async def test_zoom_meeting_created(zoom_settings):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.host == "zoom.us":
            return httpx.Response(200, json={"access_token": "tok"})
        return httpx.Response(
            201,
            json={"id": 123, "join_url": "https://zoom.us/j/123", "password": "pw"},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        result = await MeetingLinkService(http_client=http_client).generate_meeting_link(
            "Zoom", _config()
        )

    assert result.success is True
    assert result.meeting_link == "https://zoom.us/j/123"
    assert result.provider == "zoom"
    assert result.meeting_details["meetingId"] == "123"
    create = requests[1]
    assert create.url.path == "/v2/users/dana@example.com/meetings"
    assert create.headers["Authorization"] == "Bearer tok"


async def test_zoom_error_returns_failure(zoom_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"reason": "Invalid client"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        result = await MeetingLinkService(http_client=http_client).generate_meeting_link(
            "Zoom", _config()
        )

    assert result.success is False
    assert result.error.startswith("Failed to create Zoom meeting")


async def test_zoom_unconfigured(monkeypatch):
    monkeypatch.setattr(settings, "zoom_account_id", "")

    result = await MeetingLinkService().generate_meeting_link("Zoom", _config())

    assert result.success is False
    assert result.error == "Zoom is not configured"


async def test_meet_links_need_no_update_or_delete():
    service = MeetingLinkService()
    details = {"meetingId": "abc-defg-hij", "provider": "google_meet"}

    assert (await service.update_meeting(details, START, 45)).success is True
    assert (await service.delete_meeting(details)).success is True


async def test_zoom_meeting_deleted(zoom_settings):
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append((request.method, request.url.path))
        if request.url.host == "zoom.us":
            return httpx.Response(200, json={"access_token": "tok"})
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        result = await MeetingLinkService(http_client=http_client).delete_meeting(
            {"meetingId": "123", "provider": "zoom"}
        )

    assert result.success is True
    assert methods[-1] == ("DELETE", "/v2/meetings/123")


# Email


def test_render_email_addresses_each_recipient():
    data = AppointmentEmailData(
        appointment_id="a1",
        client_name="Cleo Test",
        client_email="cleo@example.com",
        provider_name="Dana Test",
        provider_email="dana@example.com",
        scheduled_at=START,
        duration=30,
        appointment_type="consultation",
        meeting_link="https://meet.google.com/abc-defg-hij",
    )

    client_html = render_email("confirmation.html", data, is_provider=False)
    provider_html = render_email("confirmation.html", data, is_provider=True)

    assert "Cleo Test" in client_html
    assert "Dana Test" in provider_html
    assert "https://meet.google.com/abc-defg-hij" in client_html
    assert "Appointment Confirmed" in client_html


async def test_email_without_smtp_reports_failure(monkeypatch):
    from app.services.email_service import AppointmentEmailService

    monkeypatch.setattr(settings, "smtp_user", "")
    data = AppointmentEmailData(
        appointment_id="a1",
        client_name="Cleo Test",
        client_email="cleo@example.com",
        provider_name="Dana Test",
        provider_email="dana@example.com",
        scheduled_at=START,
        duration=30,
        appointment_type="consultation",
    )

    result = await AppointmentEmailService().send_appointment_confirmation_email(data)

    assert result["success"] is False
    assert result["client"] is False
    assert result["provider"] is False
