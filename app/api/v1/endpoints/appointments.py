"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.core.exceptions import BadRequestException
from app.dependencies import Appointments, CurrentUser, Slots, require_roles
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    UserRole,
)
from app.schemas.slots import (
    AvailableSlotsResponse,
    ProviderAvailabilityResponse,
    ProviderAvailabilityUpdate,
)
from app.services.slot_service import DEFAULT_SLOT_DURATION

router = APIRouter()

_staff = require_roles(
    UserRole.ADMIN.value, UserRole.DIETITIAN.value, UserRole.HEALTH_COUNSELOR.value
)


@router.get(
    "",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    service: Appointments,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    on_date: date | None = Query(None, alias="date"),
    search: str | None = Query(None, max_length=200),
    dietitian_id: UUID | None = Query(None, alias="dietitianId"),
    client_id: UUID | None = Query(None, alias="clientId"),
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    include_all: bool = Query(False, alias="includeAll"),
) -> AppointmentListResponse:
    """
    List the appointments visible to the caller.

    Admins see everything, providers their own bookings, clients their
    own appointments. Results are ordered by start time.

    Args:
        current_user: Authenticated user
        service: Appointment service
        status_filter: Filter by status
        on_date: Calendar day in the clinic timezone
        search: Free text over type, notes and party names
        dietitian_id: Filter by provider
        client_id: Filter by client
        limit: Items per page
        page: Page number
        include_all: Return everything on one page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        on_date=on_date,
        search=search,
        dietitian_id=dietitian_id,
        client_id=client_id,
        limit=limit,
        page=page,
        include_all=include_all,
    )
    return await service.list_appointments(current_user, filters)


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Book an appointment on behalf of a client.

    Admins may book any pair; dietitians only for their own assigned
    clients; health counselors for unassigned clients (claiming them) or
    their own.

    Args:
        data: Appointment creation data
        current_user: Authenticated user
        service: Appointment service

    Returns:
        Created appointment
    """
    return await service.create_appointment(current_user, data)


@router.get(
    "/available-slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get bookable slots for a provider",
)
async def get_available_slots(
    current_user: CurrentUser,
    slots: Slots,
    provider_id: UUID | None = Query(None, alias="providerId"),
    dietitian_id: UUID | None = Query(None, alias="dietitianId"),
    on_date: date | None = Query(None, alias="date"),
    duration: int = Query(DEFAULT_SLOT_DURATION, ge=15, le=180),
) -> AvailableSlotsResponse:
    """
    Compute the slots of a provider on a day from live reservations.

    Args:
        current_user: Authenticated user
        slots: Slot service
        provider_id: Provider to query
        dietitian_id: Alternate name for ``providerId``
        on_date: Day in the clinic timezone
        duration: Slot length in minutes

    Returns:
        Slots with availability flags
    """
    target = provider_id or dietitian_id
    if target is None or on_date is None:
        raise BadRequestException("providerId and date are required")

    return await slots.get_available_slots(target, on_date, duration)


@router.get(
    "/provider-availability",
    response_model=ProviderAvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a provider's weekly availability",
)
async def get_provider_availability(
    current_user: CurrentUser,
    slots: Slots,
    provider_id: UUID | None = Query(None, alias="providerId"),
) -> ProviderAvailabilityResponse:
    """Weekly windows of a provider; defaults to the caller."""
    return await slots.get_provider_availability(provider_id or current_user["id"])


@router.put(
    "/provider-availability",
    response_model=ProviderAvailabilityResponse,
    status_code=status.HTTP_200_OK,
    summary="Replace a provider's weekly availability",
)
async def update_provider_availability(
    data: ProviderAvailabilityUpdate,
    slots: Slots,
    current_user: dict = Depends(_staff),
) -> ProviderAvailabilityResponse:
    """
    Replace weekly availability windows.

    Providers edit their own; admins edit any provider named in the body.
    """
    return await slots.update_provider_availability(current_user, data)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If the appointment does not exist
        ForbiddenException: If the caller is not a party to it
    """
    return await service.get_appointment(current_user, appointment_id)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: Appointments,
    data: AppointmentCancel | None = None,
) -> AppointmentResponse:
    """
    Cancel a scheduled appointment, releasing its interval.

    Args:
        appointment_id: Appointment ID
        current_user: Authenticated user
        service: Appointment service
        data: Optional cancellation reason

    Returns:
        Updated appointment
    """
    return await service.cancel_appointment(
        current_user, appointment_id, data or AppointmentCancel()
    )


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """
    Move an appointment to a new start time.

    Raises:
        SchedulingConflictException: If the new interval is taken
    """
    return await service.reschedule_appointment(current_user, appointment_id, data)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark appointment completed",
)
async def complete_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: Appointments,
) -> AppointmentResponse:
    """Mark an appointment as completed (provider or admin)."""
    return await service.complete_appointment(current_user, appointment_id)
