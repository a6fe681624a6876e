"""Appointment lifecycle recorder: the only writer of appointments."""

import hashlib
import math
import uuid
from collections import defaultdict
from datetime import datetime, time, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import and_, func, insert, or_, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    PersistenceException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointment_events, appointments
from app.models.base import utcnow
from app.models.users import users
from app.schemas.appointments import (
    PROVIDER_ROLES,
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    LifecycleAction,
    Pagination,
    UserRole,
)
from app.services.booking_policy import (
    AllowWithAssignment,
    BookingPolicy,
    Deny,
    EnsureAssignment,
    policy_for,
)
from app.services.conflict_checker import ConflictChecker
from app.services.enrichment import BookingEvent, EnrichmentContext, EnrichmentOrchestrator
from app.services.lifecycle import next_status, normalize_duration, normalize_type
from app.services.user_service import UserDirectory

logger = structlog.get_logger()

LIST_CACHE_PREFIX = "appointments:list"
INCLUDE_ALL_LIMIT = 500


def performer_ref(caller: dict[str, Any], timestamp: datetime | None = None) -> dict[str, Any]:
    """JSON performer reference stamped on appointments."""
    return {
        "userId": str(caller["id"]),
        "role": caller["role"],
        "name": UserDirectory.display_name(caller),
        "timestamp": (timestamp or utcnow()).isoformat(),
    }


class AppointmentService:
    """Creates appointments and applies lifecycle transitions."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheManager | None = None,
        orchestrator: EnrichmentOrchestrator | None = None,
    ):
        """Initialize service with database session, list cache and side-effect orchestrator."""
        self.db = db
        self.cache = cache
        self.orchestrator = orchestrator
        self.directory = UserDirectory(db)
        self.conflicts = ConflictChecker(db)

    # Creation

    async def create_appointment(
        self,
        caller: dict[str, Any],
        data: AppointmentCreate,
        policy: BookingPolicy | None = None,
    ) -> AppointmentResponse:
        """
        Book an appointment.

        Args:
            caller: Authenticated user
            data: Booking request
            policy: Authorization policy; defaults to the caller's role policy

        Returns:
            The created appointment, after side effects have run

        Raises:
            ForbiddenException: Role or assignment violation
            ClientNotFoundException: Unknown client
            ProviderNotFoundException: Unknown provider
            SchedulingConflictException: Overlapping reservation
            PersistenceException: Store write failed
        """
        policy = policy or policy_for(caller["role"])
        client = await self.directory.get_client(data.client_id)

        decision = policy.authorize(caller, data.dietitian_id, client)
        if isinstance(decision, Deny):
            logger.info(
                "booking_denied",
                caller_id=str(caller["id"]),
                role=caller["role"],
                provider_id=str(data.dietitian_id),
                client_id=str(data.client_id),
                reason=decision.reason,
            )
            raise decision.to_exception()

        provider = await self.directory.get_provider(data.dietitian_id)

        duration = normalize_duration(data.duration)
        appointment_type = normalize_type(data.type)
        scheduled_at = data.scheduled_at
        appointment_id = uuid.uuid4()
        now = utcnow()

        try:
            # Serializes bookings per provider until commit
            await self.directory.lock_provider(provider["id"])
            await self.conflicts.ensure_no_conflict(provider["id"], scheduled_at, duration)

            if isinstance(decision, AllowWithAssignment):
                await EnsureAssignment(self.directory).apply(client["id"], decision.counselor_id)

            await self.db.execute(
                insert(appointments).values(
                    id=appointment_id,
                    provider_id=provider["id"],
                    client_id=client["id"],
                    scheduled_at=scheduled_at,
                    ends_at=scheduled_at + timedelta(minutes=duration),
                    duration=duration,
                    type=appointment_type.value,
                    appointment_type_id=data.appointment_type_id,
                    appointment_mode_id=data.appointment_mode_id,
                    mode_name=data.mode_name,
                    location=data.location,
                    notes=data.notes,
                    status=AppointmentStatus.SCHEDULED.value,
                    created_by=performer_ref(caller, now),
                    created_at=now,
                    updated_at=now,
                )
            )
            await self._append_event(
                appointment_id,
                LifecycleAction.CREATED,
                caller,
                details={
                    "scheduledAt": scheduled_at.isoformat(),
                    "duration": duration,
                    "type": appointment_type.value,
                    "providerId": str(provider["id"]),
                    "clientId": str(client["id"]),
                    "modeName": data.mode_name,
                },
                timestamp=now,
            )
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_create_failed", error=str(e))
            raise PersistenceException(detail=str(getattr(e, "orig", e))) from e

        logger.info(
            "appointment_created",
            appointment_id=str(appointment_id),
            provider_id=str(provider["id"]),
            client_id=str(client["id"]),
            scheduled_at=scheduled_at.isoformat(),
            duration=duration,
            type=appointment_type.value,
        )

        self.invalidate_list_cache()
        await self._enrich(BookingEvent.BOOKED, appointment_id, provider, client, caller)
        return await self._load_response(appointment_id)

    # Transitions

    async def cancel_appointment(
        self,
        caller: dict[str, Any],
        appointment_id: UUID,
        data: AppointmentCancel,
    ) -> AppointmentResponse:
        """Cancel an appointment; its slot becomes bookable again."""
        row = await self._get_row(appointment_id)
        self._ensure_can_modify(caller, row, LifecycleAction.CANCELLED)

        async def apply(current: dict[str, Any], now: datetime) -> dict[str, Any]:
            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(
                    status=next_status(current["status"], LifecycleAction.CANCELLED).value,
                    cancelled_by={**performer_ref(caller, now), "reason": data.reason},
                    updated_at=now,
                )
            )
            return {"reason": data.reason, "previousStatus": current["status"]}

        await self._transition(caller, appointment_id, LifecycleAction.CANCELLED, apply)
        await self._enrich(
            BookingEvent.CANCELLED,
            appointment_id,
            caller=caller,
            details={"reason": data.reason},
        )
        return await self._load_response(appointment_id)

    async def reschedule_appointment(
        self,
        caller: dict[str, Any],
        appointment_id: UUID,
        data: AppointmentReschedule,
    ) -> AppointmentResponse:
        """Move an appointment to a new time, re-checking for conflicts."""
        row = await self._get_row(appointment_id)
        self._ensure_can_modify(caller, row, LifecycleAction.RESCHEDULED)
        previous_scheduled_at = row["scheduled_at"]

        async def apply(current: dict[str, Any], now: datetime) -> dict[str, Any]:
            new_status = next_status(current["status"], LifecycleAction.RESCHEDULED)
            duration = (
                normalize_duration(data.duration) if data.duration is not None else current["duration"]
            )
            await self.conflicts.ensure_no_conflict(
                current["provider_id"], data.scheduled_at, duration, exclude_id=appointment_id
            )
            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(
                    scheduled_at=data.scheduled_at,
                    ends_at=data.scheduled_at + timedelta(minutes=duration),
                    duration=duration,
                    status=new_status.value,
                    rescheduled_by={
                        **performer_ref(caller, now),
                        "previousScheduledAt": current["scheduled_at"].isoformat(),
                        "reason": data.reason,
                    },
                    updated_at=now,
                )
            )
            return {
                "previousScheduledAt": current["scheduled_at"].isoformat(),
                "newScheduledAt": data.scheduled_at.isoformat(),
                "previousDuration": current["duration"],
                "newDuration": duration,
                "reason": data.reason,
            }

        await self._transition(caller, appointment_id, LifecycleAction.RESCHEDULED, apply)
        await self._enrich(
            BookingEvent.RESCHEDULED,
            appointment_id,
            caller=caller,
            details={"reason": data.reason, "previous_scheduled_at": previous_scheduled_at},
        )
        return await self._load_response(appointment_id)

    async def complete_appointment(
        self,
        caller: dict[str, Any],
        appointment_id: UUID,
    ) -> AppointmentResponse:
        """Mark an appointment as held."""
        row = await self._get_row(appointment_id)
        if caller["role"] != UserRole.ADMIN.value and row["provider_id"] != caller["id"]:
            raise ForbiddenException("Only the appointment's provider can complete it")

        async def apply(current: dict[str, Any], now: datetime) -> dict[str, Any]:
            await self.db.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(
                    status=next_status(current["status"], LifecycleAction.COMPLETED).value,
                    updated_at=now,
                )
            )
            return {"previousStatus": current["status"]}

        await self._transition(caller, appointment_id, LifecycleAction.COMPLETED, apply)
        await self._enrich(BookingEvent.COMPLETED, appointment_id, caller=caller)
        return await self._load_response(appointment_id)

    async def _transition(self, caller, appointment_id, action, apply) -> None:
        """Lock, re-read, apply the change and append its event in one transaction."""
        try:
            row = await self._get_row(appointment_id)
            await self.directory.lock_provider(row["provider_id"])
            # Re-read under the lock
            row = await self._get_row(appointment_id)
            now = utcnow()
            details = await apply(row, now)
            await self._append_event(appointment_id, action, caller, details=details, timestamp=now)
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_transition_failed", action=action.value, error=str(e))
            raise PersistenceException(
                message="Failed to update appointment", detail=str(getattr(e, "orig", e))
            ) from e

        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment_id),
            action=action.value,
            performed_by=str(caller["id"]),
        )
        self.invalidate_list_cache()

    async def _append_event(
        self,
        appointment_id: UUID,
        action: LifecycleAction,
        caller: dict[str, Any],
        details: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        """Insert the next lifecycle event; existing events are never touched."""
        last = await self.db.execute(
            select(func.max(appointment_events.c.sequence)).where(
                appointment_events.c.appointment_id == appointment_id
            )
        )
        sequence = (last.scalar() or 0) + 1
        await self.db.execute(
            insert(appointment_events).values(
                id=uuid.uuid4(),
                appointment_id=appointment_id,
                sequence=sequence,
                action=action.value,
                performed_by=caller["id"],
                performed_by_role=caller["role"],
                performed_by_name=UserDirectory.display_name(caller),
                timestamp=timestamp or utcnow(),
                details=details,
            )
        )

    # Permissions

    def _ensure_can_modify(
        self, caller: dict[str, Any], row: dict[str, Any], action: LifecycleAction
    ) -> None:
        role = caller["role"]
        if role == UserRole.ADMIN.value:
            return
        if role in PROVIDER_ROLES:
            created_by = (row.get("created_by") or {}).get("userId")
            if row["provider_id"] == caller["id"] or created_by == str(caller["id"]):
                return
        elif role == UserRole.CLIENT.value and row["client_id"] == caller["id"]:
            if action in (LifecycleAction.CANCELLED, LifecycleAction.RESCHEDULED):
                return
        raise ForbiddenException("You do not have permission to modify this appointment")

    async def _ensure_can_view(self, caller: dict[str, Any], row: dict[str, Any]) -> None:
        role = caller["role"]
        if role == UserRole.ADMIN.value:
            return
        if role == UserRole.CLIENT.value:
            if row["client_id"] == caller["id"]:
                return
        elif role in PROVIDER_ROLES:
            if row["provider_id"] == caller["id"]:
                return
            if row["client_id"] in await self.directory.assigned_client_ids(caller["id"]):
                return
        raise ForbiddenException("Access denied to this appointment")

    # Reads

    async def get_appointment(self, caller: dict[str, Any], appointment_id: UUID) -> AppointmentResponse:
        """
        Get an appointment with its lifecycle history.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If caller may not see it
        """
        row = await self._get_row(appointment_id)
        await self._ensure_can_view(caller, row)
        return (await self._to_responses([row]))[0]

    async def list_appointments(
        self,
        caller: dict[str, Any],
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the caller.

        Admins see everything, providers see their own and their assigned
        clients' appointments, clients see only their own.

        Args:
            caller: Authenticated user
            filters: Filter and pagination parameters

        Returns:
            Page of appointments with pagination totals
        """
        cache_key = self._list_cache_key(caller, filters)
        if self.cache:
            cached = self.cache.get_json(cache_key)
            if cached:
                return AppointmentListResponse.model_validate(cached)

        conditions = await self._scope_conditions(caller)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.dietitian_id:
            conditions.append(appointments.c.provider_id == filters.dietitian_id)
        if filters.client_id:
            conditions.append(appointments.c.client_id == filters.client_id)
        if filters.on_date:
            day_start = datetime.combine(
                filters.on_date, time.min, tzinfo=ZoneInfo(settings.clinic_timezone)
            )
            conditions.append(appointments.c.scheduled_at >= day_start)
            conditions.append(appointments.c.scheduled_at < day_start + timedelta(days=1))
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            matching_users = select(users.c.id).where(
                or_(
                    users.c.first_name.ilike(pattern),
                    users.c.last_name.ilike(pattern),
                    users.c.email.ilike(pattern),
                )
            )
            conditions.append(
                or_(
                    appointments.c.type.ilike(pattern),
                    appointments.c.notes.ilike(pattern),
                    appointments.c.client_id.in_(matching_users),
                    appointments.c.provider_id.in_(matching_users),
                )
            )

        where = and_(*conditions) if conditions else true()
        total = (
            await self.db.execute(select(func.count()).select_from(appointments).where(where))
        ).scalar() or 0

        if filters.include_all:
            page, limit = 1, INCLUDE_ALL_LIMIT
        else:
            page, limit = filters.page, filters.limit

        stmt = (
            select(appointments)
            .where(where)
            .order_by(
                appointments.c.scheduled_at.desc()
                if filters.newest_first
                else appointments.c.scheduled_at.asc()
            )
            .limit(limit)
            .offset((page - 1) * limit)
        )
        rows = [dict(row._mapping) for row in (await self.db.execute(stmt)).fetchall()]

        response = AppointmentListResponse(
            appointments=await self._to_responses(rows),
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                pages=math.ceil(total / limit) if total else 0,
            ),
        )

        if self.cache:
            self.cache.set_json(
                cache_key,
                response.model_dump(mode="json", by_alias=True),
                ttl=settings.appointment_list_cache_ttl,
            )
        return response

    async def _scope_conditions(self, caller: dict[str, Any]) -> list:
        role = caller["role"]
        if role == UserRole.ADMIN.value:
            return []
        if role in PROVIDER_ROLES:
            client_ids = await self.directory.assigned_client_ids(caller["id"])
            scope = [appointments.c.provider_id == caller["id"]]
            if client_ids:
                scope.append(appointments.c.client_id.in_(client_ids))
            return [or_(*scope)]
        return [appointments.c.client_id == caller["id"]]

    # Cache

    @staticmethod
    def _list_cache_key(caller: dict[str, Any], filters: AppointmentFilters) -> str:
        digest = hashlib.sha1(filters.model_dump_json().encode()).hexdigest()
        return f"{LIST_CACHE_PREFIX}:{caller['id']}:{digest}"

    def invalidate_list_cache(self) -> None:
        """Drop every cached listing; called after each write."""
        if self.cache:
            deleted = self.cache.delete_pattern(f"{LIST_CACHE_PREFIX}:*")
            logger.debug("appointment_list_cache_invalidated", keys=deleted)

    # Helpers

    async def _get_row(self, appointment_id: UUID) -> dict[str, Any]:
        result = await self.db.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row._mapping)

    async def _load_response(self, appointment_id: UUID) -> AppointmentResponse:
        row = await self._get_row(appointment_id)
        return (await self._to_responses([row]))[0]

    async def _to_responses(self, rows: list[dict[str, Any]]) -> list[AppointmentResponse]:
        """Attach parties and lifecycle history to appointment rows."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        events_result = await self.db.execute(
            select(appointment_events)
            .where(appointment_events.c.appointment_id.in_(ids))
            .order_by(appointment_events.c.appointment_id, appointment_events.c.sequence)
        )
        history: dict[UUID, list[dict]] = defaultdict(list)
        for event in events_result.mappings().all():
            history[event["appointment_id"]].append(dict(event))

        parties = await self.directory.get_users(
            {row["provider_id"] for row in rows} | {row["client_id"] for row in rows}
        )

        return [
            AppointmentResponse.model_validate(
                {
                    **row,
                    "provider": parties.get(row["provider_id"]),
                    "client": parties.get(row["client_id"]),
                    "lifecycle_history": history[row["id"]],
                }
            )
            for row in rows
        ]

    async def _enrich(
        self,
        event: BookingEvent,
        appointment_id: UUID,
        provider: dict[str, Any] | None = None,
        client: dict[str, Any] | None = None,
        caller: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Run post-commit side effects; failures never reach the caller."""
        if self.orchestrator is None:
            return
        try:
            row = await self._get_row(appointment_id)
            parties = await self.directory.get_users([row["provider_id"], row["client_id"]])
        except SQLAlchemyError as e:
            # The change is already committed
            logger.warning(
                "enrichment_skipped",
                booking_event=event.value,
                appointment_id=str(appointment_id),
                error=str(e),
            )
            await self.db.rollback()
            return
        ctx = EnrichmentContext(
            db=self.db,
            event=event,
            appointment=row,
            provider=provider or parties.get(row["provider_id"]),
            client=client or parties.get(row["client_id"]),
            performer=caller,
            details=details or {},
        )
        await self.orchestrator.run(ctx)
