"""Slot and provider availability schemas."""

import re
from datetime import date, datetime
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from app.schemas.common import CamelModel

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class AvailabilityWindow(CamelModel):
    """Recurring weekly working window of a provider."""

    day: str
    start_time: str
    end_time: str

    @field_validator("day")
    @classmethod
    def validate_day(cls, v: str) -> str:
        """Accept weekday names case-insensitively."""
        day = v.strip().lower()
        if day not in WEEKDAYS:
            raise ValueError(f"day must be one of {', '.join(WEEKDAYS)}")
        return day

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        """Times are 24-hour HH:MM."""
        if not _HHMM.match(v):
            raise ValueError("time must be in HH:MM format")
        return v

    @model_validator(mode="after")
    def validate_order(self) -> "AvailabilityWindow":
        """End must come after start."""
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class ProviderAvailabilityUpdate(CamelModel):
    """Replace a provider's weekly availability."""

    provider_id: UUID | None = None
    availability: list[AvailabilityWindow] = Field(default_factory=list, max_length=50)

    @model_validator(mode="after")
    def validate_no_overlap(self) -> "ProviderAvailabilityUpdate":
        """Windows on the same day must not overlap."""
        by_day: dict[str, list[AvailabilityWindow]] = {}
        for window in self.availability:
            by_day.setdefault(window.day, []).append(window)
        for day, windows in by_day.items():
            windows.sort(key=lambda w: w.start_time)
            for previous, current in zip(windows, windows[1:]):
                if current.start_time < previous.end_time:
                    raise ValueError(f"Overlapping availability windows on {day}")
        return self


class ProviderAvailabilityResponse(CamelModel):
    """A provider's weekly availability."""

    provider_id: UUID
    provider_name: str
    availability: list[AvailabilityWindow]
    uses_default_hours: bool


class SlotResponse(CamelModel):
    """One candidate slot."""

    time: str
    end_time: str
    starts_at: datetime
    available: bool
    conflict_reason: str | None = None


class AvailableSlotsResponse(CamelModel):
    """Slots for a provider on a date."""

    date: date
    provider_id: UUID
    provider_name: str
    duration: int
    timezone: str
    slots: list[SlotResponse]
    available_slots: list[str]
    message: str | None = None
