"""Client-facing appointment endpoints."""

from fastapi import APIRouter, Depends, Query, status

from app.dependencies import Appointments, require_roles
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    ClientAppointmentCreate,
    UserRole,
)
from app.services.booking_policy import ClientSelfBookingPolicy

router = APIRouter(prefix="/client/appointments", tags=["Client Appointments"])


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book with one of my providers",
)
async def book_own_appointment(
    data: ClientAppointmentCreate,
    service: Appointments,
    current_user: dict = Depends(require_roles(UserRole.CLIENT.value)),
) -> AppointmentResponse:
    """
    Book an appointment for the authenticated client.

    The provider must be one the client is assigned to. Conflict checks
    and side effects are the same as for staff bookings.

    Args:
        data: Provider, time and mode of the booking
        service: Appointment service
        current_user: Authenticated client

    Returns:
        Created appointment
    """
    booking = AppointmentCreate(
        dietitian_id=data.dietitian_id,
        client_id=current_user["id"],
        scheduled_at=data.scheduled_at,
        duration=data.duration,
        type=data.type,
        notes=data.notes,
        appointment_mode_id=data.appointment_mode_id,
        mode_name=data.mode_name,
    )
    return await service.create_appointment(
        current_user, booking, policy=ClientSelfBookingPolicy()
    )


@router.get(
    "",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my appointments",
)
async def list_own_appointments(
    service: Appointments,
    current_user: dict = Depends(require_roles(UserRole.CLIENT.value)),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    page: int = Query(1, ge=1),
) -> AppointmentListResponse:
    """Appointments of the authenticated client, most recent first."""
    filters = AppointmentFilters(
        status=status_filter,
        limit=limit,
        page=page,
        newest_first=True,
    )
    return await service.list_appointments(current_user, filters)
