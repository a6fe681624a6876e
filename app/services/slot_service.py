"""Bookable slot calculation from weekly availability and live reservations."""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import BadRequestException, ForbiddenException
from app.schemas.appointments import UserRole
from app.schemas.slots import (
    AvailabilityWindow,
    AvailableSlotsResponse,
    ProviderAvailabilityResponse,
    ProviderAvailabilityUpdate,
    SlotResponse,
)
from app.services.conflict_checker import ConflictChecker
from app.services.user_service import UserDirectory

logger = structlog.get_logger()

# date.weekday() order
DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

DEFAULT_SLOT_DURATION = 30


@dataclass(frozen=True)
class TimeWindow:
    """A same-day wall-clock interval."""

    start: time
    end: time


def parse_hhmm(value: str) -> time:
    """Parse ``HH:MM`` into a time."""
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def build_day_windows(
    availability: list[dict[str, Any]] | None,
    day: date,
    default_window: TimeWindow,
) -> list[TimeWindow]:
    """
    Select the working windows of a provider for a date.

    Args:
        availability: Provider's weekly windows ``[{"day", "startTime", "endTime"}]``
        day: Target date
        default_window: Window used when the provider has configured nothing

    Returns:
        Windows for that weekday, in start order; empty when the provider
        has availability configured but none on this weekday
    """
    if not availability:
        return [default_window]

    day_name = DAY_NAMES[day.weekday()]
    windows = []
    for entry in availability:
        if str(entry.get("day", "")).lower() != day_name:
            continue
        try:
            window = TimeWindow(parse_hhmm(entry["startTime"]), parse_hhmm(entry["endTime"]))
        except (KeyError, ValueError):
            logger.warning("invalid_availability_window", entry=entry)
            continue
        if window.end > window.start:
            windows.append(window)

    return sorted(windows, key=lambda w: w.start)


def _overlaps_lunch(start: datetime, end: datetime, lunch_break: TimeWindow | None) -> bool:
    if lunch_break is None:
        return False
    return start.time() < lunch_break.end and end.time() > lunch_break.start


def generate_slots(
    day: date,
    windows: list[TimeWindow],
    duration: int,
    booked: list[dict[str, Any]],
    now: datetime,
    lunch_break: TimeWindow | None = None,
    tz: ZoneInfo | None = None,
) -> list[SlotResponse]:
    """
    Enumerate candidate slots for a day.

    Candidates step by ``duration`` from each window start while the whole
    slot fits in the window. Slots touching the lunch break and slots that
    start at or before ``now`` are dropped. A slot overlapping any booked
    interval is kept but marked unavailable.

    Args:
        day: Target date (in ``tz``)
        windows: Working windows for the day
        duration: Slot length in minutes
        booked: Live appointments with ``scheduled_at`` and ``ends_at``
        now: Current instant
        lunch_break: Daily break, or None
        tz: Clinic timezone; UTC when omitted

    Returns:
        Slots in chronological order, one per start time
    """
    tz = tz or ZoneInfo("UTC")
    step = timedelta(minutes=duration)
    slots: dict[str, SlotResponse] = {}

    for window in windows:
        current = datetime.combine(day, window.start, tzinfo=tz)
        window_end = datetime.combine(day, window.end, tzinfo=tz)

        while current + step <= window_end:
            slot_end = current + step
            label = current.strftime("%H:%M")

            if label in slots or _overlaps_lunch(current, slot_end, lunch_break) or current <= now:
                current = slot_end
                continue

            conflict_reason = None
            for appointment in booked:
                booked_start = appointment["scheduled_at"]
                booked_end = appointment["ends_at"]
                if current < booked_end and slot_end > booked_start:
                    conflict_reason = (
                        f"Conflicts with booking {booked_start.astimezone(tz):%H:%M}"
                        f"-{booked_end.astimezone(tz):%H:%M}"
                    )
                    break

            slots[label] = SlotResponse(
                time=label,
                end_time=slot_end.strftime("%H:%M"),
                starts_at=current.astimezone(UTC),
                available=conflict_reason is None,
                conflict_reason=conflict_reason,
            )
            current = slot_end

    return [slots[label] for label in sorted(slots)]


class SlotService:
    """Computes a provider's bookable slots; always reads live reservations."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db
        self.directory = UserDirectory(db)
        self.conflicts = ConflictChecker(db)
        self.tz = ZoneInfo(settings.clinic_timezone)
        self.default_window = TimeWindow(
            parse_hhmm(settings.default_workday_start),
            parse_hhmm(settings.default_workday_end),
        )
        lunch = settings.lunch_break
        self.lunch_break = TimeWindow(parse_hhmm(lunch[0]), parse_hhmm(lunch[1])) if lunch else None

    async def get_available_slots(
        self,
        provider_id: UUID,
        on_date: date,
        duration: int = DEFAULT_SLOT_DURATION,
        now: datetime | None = None,
    ) -> AvailableSlotsResponse:
        """
        Get the slots of a provider on a date.

        Args:
            provider_id: Dietitian or health counselor
            on_date: Target date in the clinic timezone
            duration: Slot length in minutes
            now: Current instant, for testing

        Returns:
            Full slot list plus the bare start times of available slots

        Raises:
            ProviderNotFoundException: If the id is not a provider
        """
        provider = await self.directory.get_provider(provider_id)
        now = now or datetime.now(UTC)

        windows = build_day_windows(provider.get("availability"), on_date, self.default_window)
        message = None
        slots: list[SlotResponse] = []

        if not windows:
            message = f"Provider is not available on {DAY_NAMES[on_date.weekday()]}"
        else:
            day_start = datetime.combine(on_date, time.min, tzinfo=self.tz)
            booked = await self.conflicts.appointments_between(
                provider_id, day_start, day_start + timedelta(days=1)
            )
            slots = generate_slots(
                on_date,
                windows,
                duration,
                booked,
                now,
                lunch_break=self.lunch_break,
                tz=self.tz,
            )

        logger.debug(
            "slots_computed",
            provider_id=str(provider_id),
            date=on_date.isoformat(),
            total=len(slots),
            available=sum(1 for slot in slots if slot.available),
        )
        return AvailableSlotsResponse(
            date=on_date,
            provider_id=provider_id,
            provider_name=UserDirectory.display_name(provider),
            duration=duration,
            timezone=settings.clinic_timezone,
            slots=slots,
            available_slots=[slot.time for slot in slots if slot.available],
            message=message,
        )

    async def get_provider_availability(self, provider_id: UUID) -> ProviderAvailabilityResponse:
        """Weekly windows of a provider; the default window when none are configured."""
        provider = await self.directory.get_provider(provider_id)
        configured = provider.get("availability") or []
        windows = configured or [
            {
                "day": day,
                "startTime": settings.default_workday_start,
                "endTime": settings.default_workday_end,
            }
            for day in DAY_NAMES
        ]
        return ProviderAvailabilityResponse(
            provider_id=provider_id,
            provider_name=UserDirectory.display_name(provider),
            availability=[AvailabilityWindow.model_validate(window) for window in windows],
            uses_default_hours=not configured,
        )

    async def update_provider_availability(
        self, caller: dict[str, Any], data: ProviderAvailabilityUpdate
    ) -> ProviderAvailabilityResponse:
        """
        Replace a provider's weekly windows.

        Providers edit their own schedule; admins must name the provider.

        Raises:
            BadRequestException: Admin did not say which provider
            ForbiddenException: Provider tried to edit someone else
            ProviderNotFoundException: Unknown provider
        """
        if caller["role"] == UserRole.ADMIN.value:
            if data.provider_id is None:
                raise BadRequestException("providerId is required")
            provider_id = data.provider_id
        else:
            if data.provider_id is not None and data.provider_id != caller["id"]:
                raise ForbiddenException("You can only edit your own availability")
            provider_id = caller["id"]

        await self.directory.get_provider(provider_id)
        windows = [window.model_dump(by_alias=True) for window in data.availability]
        await self.directory.update_availability(provider_id, windows)
        logger.info("availability_updated", provider_id=str(provider_id), windows=len(windows))
        return await self.get_provider_availability(provider_id)
