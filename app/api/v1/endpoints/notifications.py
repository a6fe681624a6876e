"""Push token endpoints."""

import structlog
from fastapi import APIRouter, status
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BadRequestException
from app.dependencies import CurrentUser, DatabaseSession
from app.schemas.notifications import PushTokenRegister, PushTokenResponse
from app.services.notification_service import NotificationService

logger = structlog.get_logger()

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post(
    "/register-token",
    response_model=PushTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register FCM token",
)
async def register_fcm_token(
    token_data: PushTokenRegister,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> PushTokenResponse:
    """
    Register or update FCM token for the authenticated user.

    This endpoint should be called:
    - After successful login
    - When FCM token is refreshed
    - When user switches devices

    Args:
        token_data: FCM token and platform information
        current_user: Authenticated user
        db: Database session

    Returns:
        Registered token details
    """
    try:
        token = await NotificationService.register_token(
            db=db,
            user_id=current_user["id"],
            fcm_token=token_data.fcm_token,
            platform=token_data.platform,
        )
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("push_token_register_failed", user_id=str(current_user["id"]), error=str(e))
        raise BadRequestException(f"Failed to register token: {e!s}") from e

    return PushTokenResponse.model_validate(token)


@router.delete(
    "/deactivate-token",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate FCM token",
)
async def deactivate_fcm_token(
    token_data: PushTokenRegister,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> None:
    """
    Deactivate a specific FCM token.

    This should be called when:
    - User logs out on a specific device
    - Token becomes invalid
    """
    await NotificationService.deactivate_token(
        db=db,
        user_id=current_user["id"],
        fcm_token=token_data.fcm_token,
    )
