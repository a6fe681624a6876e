"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.config import settings
from app.core.firebase import is_firebase_initialized
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health of the booking service and what it depends on."""

    database: str
    cache: str
    push_notifications: str
    meetings: str
    email: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Readiness of the store plus the state of optional integrations.

    The status is ``degraded`` when the database is down, or Redis is
    down while the list cache is on. Push, meetings and email are only
    reported as ``configured`` or ``disabled``; bookings work without them.

    Returns:
        Detailed health status including dependencies
    """
    db_healthy = await check_database_connection()
    if settings.cache_enabled:
        cache_healthy = await check_redis_connection()
        cache = "healthy" if cache_healthy else "unhealthy"
    else:
        cache_healthy = True
        cache = "disabled"

    def configured(flag: bool) -> str:
        return "configured" if flag else "disabled"

    return DetailedHealthResponse(
        status="healthy" if db_healthy and cache_healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        cache=cache,
        push_notifications=configured(is_firebase_initialized()),
        meetings=configured(settings.zoom_configured),
        email=configured(settings.smtp_configured),
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Simple ping endpoint."""
    return {"message": "pong"}
