"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    appointments,
    client_appointments,
    health,
    notifications,
    realtime,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(client_appointments.router)
api_router.include_router(realtime.router)
api_router.include_router(notifications.router)
