"""Role-scoped booking authorization."""

from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

import structlog

from app.core.exceptions import (
    AppException,
    ClientNotAssignedException,
    ClientNotFoundException,
    ForbiddenException,
    ProviderImpersonationException,
)
from app.schemas.appointments import UserRole
from app.services.user_service import UserDirectory

logger = structlog.get_logger()


@dataclass(frozen=True)
class Allow:
    """Booking permitted as requested."""


@dataclass(frozen=True)
class AllowWithAssignment:
    """Booking permitted once the client is assigned to this counselor."""

    counselor_id: UUID


@dataclass(frozen=True)
class Deny:
    """Booking refused."""

    reason: str
    status_code: int = 403

    def to_exception(self) -> AppException:
        """Exception reported to the caller for this denial."""
        if self.status_code == 404:
            return ClientNotFoundException(self.reason)
        return ForbiddenException(self.reason)


BookingDecision = Allow | AllowWithAssignment | Deny

CLIENT_NOT_FOUND = Deny(ClientNotFoundException().message, status_code=404)
NOT_ASSIGNED = Deny(ClientNotAssignedException().message)
IMPERSONATION = Deny(ProviderImpersonationException().message)


class BookingPolicy(Protocol):
    """Decides whether a caller may book ``provider_id`` for ``client``."""

    def authorize(
        self,
        caller: dict[str, Any],
        provider_id: UUID,
        client: dict[str, Any] | None,
    ) -> BookingDecision: ...


class AdminPolicy:
    """Admins may book any provider for any client."""

    def authorize(self, caller, provider_id, client):
        if client is None:
            return CLIENT_NOT_FOUND
        return Allow()


class DietitianPolicy:
    """Dietitians book only themselves, only for clients assigned to them."""

    def authorize(self, caller, provider_id, client):
        if provider_id != caller["id"]:
            return IMPERSONATION
        if client is None:
            return CLIENT_NOT_FOUND
        if not UserDirectory.is_assigned_to_dietitian(client, caller["id"]):
            return NOT_ASSIGNED
        return Allow()


class HealthCounselorPolicy:
    """Counselors book only themselves; the first booking claims an unassigned client."""

    def authorize(self, caller, provider_id, client):
        if provider_id != caller["id"]:
            return IMPERSONATION
        if client is None:
            return CLIENT_NOT_FOUND
        current = client.get("assigned_health_counselor_id")
        if current is None:
            return AllowWithAssignment(counselor_id=caller["id"])
        if current != caller["id"]:
            return Deny("Client is assigned to another health counselor")
        return Allow()


class ClientPolicy:
    """Clients never book through the staff endpoint."""

    def authorize(self, caller, provider_id, client):
        return Deny("Clients cannot create appointments through this endpoint")


class ClientSelfBookingPolicy:
    """Clients book for themselves with one of their assigned providers."""

    def authorize(self, caller, provider_id, client):
        if caller["role"] != UserRole.CLIENT.value:
            return Deny("Only clients can use this endpoint")
        if client is None or client["id"] != caller["id"]:
            return CLIENT_NOT_FOUND
        if str(provider_id) not in UserDirectory.assigned_provider_ids(client):
            return Deny("You can only book appointments with your assigned provider")
        return Allow()


_POLICIES: dict[str, BookingPolicy] = {
    UserRole.ADMIN.value: AdminPolicy(),
    UserRole.DIETITIAN.value: DietitianPolicy(),
    UserRole.HEALTH_COUNSELOR.value: HealthCounselorPolicy(),
    UserRole.CLIENT.value: ClientPolicy(),
}


def policy_for(role: str) -> BookingPolicy:
    """Staff-endpoint policy for a role; unknown roles are treated as clients."""
    return _POLICIES.get(role, _POLICIES[UserRole.CLIENT.value])


class EnsureAssignment:
    """Explicit, idempotent counselor auto-assignment."""

    def __init__(self, directory: UserDirectory):
        """Initialize with the user directory sharing the booking transaction."""
        self.directory = directory

    async def apply(self, client_id: UUID, counselor_id: UUID) -> None:
        """
        Assign the counselor to the client if still unassigned.

        Raises:
            ForbiddenException: If another counselor claimed the client first
        """
        if not await self.directory.assign_health_counselor(client_id, counselor_id):
            logger.info(
                "auto_assignment_lost",
                client_id=str(client_id),
                counselor_id=str(counselor_id),
            )
            raise ForbiddenException("Client is assigned to another health counselor")
        logger.info(
            "health_counselor_assigned",
            client_id=str(client_id),
            counselor_id=str(counselor_id),
        )
