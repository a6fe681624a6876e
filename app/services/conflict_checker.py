"""Overlap detection between reservations of the same provider."""

from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SchedulingConflictException
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus

logger = structlog.get_logger()


def intervals_overlap(start1: datetime, duration1: int, start2: datetime, duration2: int) -> bool:
    """
    Check whether two half-open intervals ``[start, start+duration)`` overlap.

    Args:
        start1: Start of the first interval
        duration1: Length of the first interval in minutes
        start2: Start of the second interval
        duration2: Length of the second interval in minutes

    Returns:
        True if the intervals share any instant; touching ends do not overlap
    """
    end1 = start1 + timedelta(minutes=duration1)
    end2 = start2 + timedelta(minutes=duration2)
    return start1 < end2 and start2 < end1


class ConflictChecker:
    """Finds non-cancelled appointments that overlap a proposed slot."""

    def __init__(self, db: AsyncSession):
        """Initialize checker with database session."""
        self.db = db

    async def find_conflicts(
        self,
        provider_id: UUID,
        start: datetime,
        duration: int,
        exclude_id: UUID | None = None,
    ) -> list[dict]:
        """
        List the provider's live appointments overlapping ``[start, start+duration)``.

        Args:
            provider_id: Provider being booked
            start: Proposed start
            duration: Proposed duration in minutes
            exclude_id: Appointment to ignore (the one being rescheduled)

        Returns:
            Conflicting appointment rows as dicts
        """
        end = start + timedelta(minutes=duration)
        conditions = [
            appointments.c.provider_id == provider_id,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
            appointments.c.scheduled_at < end,
            appointments.c.ends_at > start,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        stmt = select(appointments).where(and_(*conditions)).order_by(appointments.c.scheduled_at)
        result = await self.db.execute(stmt)
        return [dict(row._mapping) for row in result.fetchall()]

    async def has_conflict(
        self,
        provider_id: UUID,
        start: datetime,
        duration: int,
        exclude_id: UUID | None = None,
    ) -> bool:
        """Check whether the proposed slot overlaps any live appointment."""
        return bool(await self.find_conflicts(provider_id, start, duration, exclude_id))

    async def ensure_no_conflict(
        self,
        provider_id: UUID,
        start: datetime,
        duration: int,
        exclude_id: UUID | None = None,
    ) -> None:
        """
        Reject a proposed slot that overlaps an existing reservation.

        Raises:
            SchedulingConflictException: If any overlap is found
        """
        conflicts = await self.find_conflicts(provider_id, start, duration, exclude_id)
        if conflicts:
            conflicting_ids = [str(row["id"]) for row in conflicts]
            logger.info(
                "scheduling_conflict",
                provider_id=str(provider_id),
                scheduled_at=start.isoformat(),
                duration=duration,
                conflicting_ids=conflicting_ids,
            )
            raise SchedulingConflictException(conflicting_ids=conflicting_ids)

    async def appointments_between(
        self,
        provider_id: UUID,
        window_start: datetime,
        window_end: datetime,
    ) -> list[dict]:
        """Live appointments of a provider intersecting a time window."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.provider_id == provider_id,
                    appointments.c.status != AppointmentStatus.CANCELLED.value,
                    appointments.c.scheduled_at < window_end,
                    appointments.c.ends_at > window_start,
                )
            )
            .order_by(appointments.c.scheduled_at)
        )
        result = await self.db.execute(stmt)
        return [dict(row._mapping) for row in result.fetchall()]
