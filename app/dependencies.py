"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.realtime import RealtimeHub, get_realtime_hub
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.enrichment import EnrichmentOrchestrator, build_default_orchestrator
from app.services.slot_service import SlotService
from app.services.user_service import UserDirectory

# Missing credentials are reported as 401 by get_current_user_id
security = HTTPBearer(auto_error=False)

_CREDENTIALS_ERROR = {
    "status_code": status.HTTP_401_UNAUTHORIZED,
    "detail": "Could not validate credentials",
    "headers": {"WWW-Authenticate": "Bearer"},
}


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(**_CREDENTIALS_ERROR)

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(**_CREDENTIALS_ERROR)

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Args:
        user_id: User ID from JWT token
        db: Database session

    Returns:
        User data from database

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserDirectory(db).get_user(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Every later log line of the request names the caller
    structlog.contextvars.bind_contextvars(user_id=str(user["id"]), role=user["role"])
    return user


def require_roles(*roles: str):
    """Dependency factory restricting an endpoint to the given roles."""

    async def checker(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
        if current_user["role"] not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return checker


def get_cache_manager() -> CacheManager | None:
    """Appointment list cache, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    return CacheManager(get_redis_client())


_orchestrator: EnrichmentOrchestrator | None = None


def get_enrichment_orchestrator() -> EnrichmentOrchestrator:
    """Process-wide side-effect orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_default_orchestrator()
    return _orchestrator


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
    orchestrator: Annotated[EnrichmentOrchestrator, Depends(get_enrichment_orchestrator)],
) -> AppointmentService:
    """Appointment service bound to the request's session."""
    return AppointmentService(db, cache=cache, orchestrator=orchestrator)


def get_slot_service(db: Annotated[AsyncSession, Depends(get_db)]) -> SlotService:
    """Slot calculator bound to the request's session."""
    return SlotService(db)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
Slots = Annotated[SlotService, Depends(get_slot_service)]
Realtime = Annotated[RealtimeHub, Depends(get_realtime_hub)]
