"""Appointment emails over SMTP with Jinja2-rendered HTML."""

import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import jinja2
import structlog

from app.config import settings

logger = structlog.get_logger()

_BASE = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333; line-height: 1.6;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: {{ color }}; color: white; padding: 20px; text-align: center;">
      <h1 style="margin: 0;">{{ heading }}</h1>
    </div>
    <p>Hello {{ recipient_name }},</p>
    {% block intro %}{% endblock %}
    <table style="width: 100%; border-collapse: collapse;">
      <tr><td><strong>{{ "Client" if is_provider else "With" }}</strong></td>
          <td>{{ client_name if is_provider else provider_name }}</td></tr>
      <tr><td><strong>Date</strong></td><td>{{ scheduled_at.strftime("%A, %B %d, %Y") }}</td></tr>
      <tr><td><strong>Time</strong></td><td>{{ scheduled_at.strftime("%H:%M") }} UTC ({{ duration }} minutes)</td></tr>
      <tr><td><strong>Type</strong></td><td>{{ appointment_type | replace("_", " ") | title }}</td></tr>
      {% if appointment_mode %}<tr><td><strong>Mode</strong></td><td>{{ appointment_mode }}</td></tr>{% endif %}
      {% if location %}<tr><td><strong>Location</strong></td><td>{{ location }}</td></tr>{% endif %}
    </table>
    {% block details %}{% endblock %}
    {% if notes %}<p><strong>Notes:</strong> {{ notes }}</p>{% endif %}
  </div>
</body>
</html>
"""

TEMPLATES = {
    "base.html": _BASE,
    "confirmation.html": """\
{% extends "base.html" %}
{% block intro %}<p>{{ "A new appointment has been booked." if is_provider else "Your appointment is confirmed." }}</p>{% endblock %}
{% block details %}{% if meeting_link %}<p><a href="{{ meeting_link }}">Join the meeting</a></p>{% endif %}{% endblock %}
""",
    "cancellation.html": """\
{% extends "base.html" %}
{% block intro %}<p>The following appointment has been cancelled{% if performer_name %} by {{ performer_name }}{% endif %}.</p>{% endblock %}
{% block details %}{% if reason %}<p><strong>Reason:</strong> {{ reason }}</p>{% endif %}{% endblock %}
""",
    "reschedule.html": """\
{% extends "base.html" %}
{% block intro %}<p>Your appointment has been moved{% if previous_scheduled_at %} from {{ previous_scheduled_at.strftime("%B %d, %Y %H:%M") }} UTC{% endif %}.</p>{% endblock %}
{% block details %}{% if meeting_link %}<p><a href="{{ meeting_link }}">Join the meeting</a></p>{% endif %}{% endblock %}
""",
}

_env = jinja2.Environment(
    loader=jinja2.DictLoader(TEMPLATES),
    autoescape=jinja2.select_autoescape(["html"]),
)


@dataclass
class AppointmentEmailData:
    """Everything the appointment emails render."""

    appointment_id: str
    client_name: str
    client_email: str
    provider_name: str
    provider_email: str
    scheduled_at: datetime
    duration: int
    appointment_type: str
    appointment_mode: str | None = None
    meeting_link: str | None = None
    location: str | None = None
    notes: str | None = None
    performer_name: str | None = None
    reason: str | None = None
    previous_scheduled_at: datetime | None = None


def render_email(template_name: str, data: AppointmentEmailData, is_provider: bool) -> str:
    """Render one recipient's HTML body."""
    context = dict(data.__dict__)
    context.update(
        recipient_name=data.provider_name if is_provider else data.client_name,
        is_provider=is_provider,
        heading={
            "confirmation.html": "Appointment Confirmed",
            "cancellation.html": "Appointment Cancelled",
            "reschedule.html": "Appointment Rescheduled",
        }[template_name],
        color={"cancellation.html": "#B42318", "reschedule.html": "#B54708"}.get(
            template_name, "#0B6B4D"
        ),
    )
    return _env.get_template(template_name).render(**context)


def _send_smtp(to: str, subject: str, html_content: str) -> None:
    """Blocking SMTP send."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.email_from_address
    msg["To"] = to
    msg.attach(MIMEText(html_content, "html"))

    if settings.smtp_port == 465:
        server = smtplib.SMTP_SSL(
            settings.smtp_host, settings.smtp_port, context=ssl.create_default_context(), timeout=30
        )
    else:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
        if settings.smtp_use_tls:
            server.starttls(context=ssl.create_default_context())

    try:
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from_address, [to], msg.as_string())
    finally:
        server.quit()


class AppointmentEmailService:
    """Sends appointment emails to both parties."""

    async def _send_pair(
        self,
        template_name: str,
        data: AppointmentEmailData,
        client_subject: str,
        provider_subject: str,
    ) -> dict[str, Any]:
        if not settings.smtp_configured:
            return {
                "success": False,
                "errors": ["SMTP not configured - SMTP_USER or SMTP_PASSWORD missing"],
                "client": False,
                "provider": False,
            }

        errors: list[str] = []
        outcome = {"client": False, "provider": False}
        recipients = (
            ("client", data.client_email, client_subject, False),
            ("provider", data.provider_email, provider_subject, True),
        )
        for party, address, subject, is_provider in recipients:
            try:
                html_content = render_email(template_name, data, is_provider)
                await asyncio.to_thread(_send_smtp, address, subject, html_content)
                outcome[party] = True
            except (smtplib.SMTPException, OSError, jinja2.TemplateError) as e:
                logger.warning(
                    "appointment_email_failed",
                    appointment_id=data.appointment_id,
                    recipient=party,
                    error=str(e),
                )
                errors.append(f"{party.capitalize()} email failed: {e}")

        return {"success": not errors, "errors": errors, **outcome}

    async def send_appointment_confirmation_email(self, data: AppointmentEmailData) -> dict[str, Any]:
        """
        Send booking confirmations to client and provider.

        Returns:
            ``{"success", "errors", "client", "provider"}`` with per-recipient outcome
        """
        day = f"{data.scheduled_at:%b %d, %Y}"
        label = data.appointment_type.replace("_", " ").title()
        return await self._send_pair(
            "confirmation.html",
            data,
            client_subject=f"Appointment Confirmed - {label} on {day}",
            provider_subject=f"New Appointment - {data.client_name} on {day}",
        )

    async def send_appointment_cancellation_email(self, data: AppointmentEmailData) -> dict[str, Any]:
        """Notify both parties of a cancellation."""
        day = f"{data.scheduled_at:%b %d, %Y}"
        return await self._send_pair(
            "cancellation.html",
            data,
            client_subject=f"Appointment Cancelled - {day}",
            provider_subject=f"Appointment Cancelled - {data.client_name} on {day}",
        )

    async def send_appointment_reschedule_email(self, data: AppointmentEmailData) -> dict[str, Any]:
        """Notify both parties of a new time."""
        day = f"{data.scheduled_at:%b %d, %Y}"
        return await self._send_pair(
            "reschedule.html",
            data,
            client_subject=f"Appointment Rescheduled - Now on {day}",
            provider_subject=f"Appointment Rescheduled - {data.client_name} on {day}",
        )
