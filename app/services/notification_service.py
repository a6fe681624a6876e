"""Notification service for sending push notifications via FCM."""

import asyncio
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.firebase import is_firebase_initialized
from app.models.notifications import notifications
from app.models.push_tokens import push_tokens
from app.schemas.notifications import PushPayload

logger = structlog.get_logger(__name__)


def app_link(path: str) -> str:
    """Absolute web app URL for a path, or the path itself when no base URL is set."""
    base = settings.app_base_url.rstrip("/")
    return f"{base}{path}" if base else path


def build_multicast_message(tokens: list[str], payload: PushPayload) -> messaging.MulticastMessage:
    """
    Build the FCM message for every platform.

    Web push only accepts HTTPS click links, so relative or plain HTTP links
    are left off the web config and kept in the data block instead.
    """
    # FCM data values must be strings
    data = {key: str(value) for key, value in payload.data.items() if value is not None}
    link = payload.click_action
    if link:
        data.setdefault("link", link)

    return messaging.MulticastMessage(
        notification=messaging.Notification(
            title=payload.title,
            body=payload.body,
        ),
        data=data,
        tokens=tokens,
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(sound="default", badge=1),
            ),
        ),
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                sound="default",
                icon=payload.icon,
                click_action=link,
            ),
        ),
        webpush=messaging.WebpushConfig(
            notification=messaging.WebpushNotification(
                icon=payload.icon or settings.push_default_icon,
            ),
            fcm_options=(
                messaging.WebpushFCMOptions(link=link)
                if link and link.startswith("https://")
                else None
            ),
        ),
    )


class NotificationService:
    """Service for managing push notifications."""

    @staticmethod
    async def send_push_notification(
        tokens: list[str],
        payload: PushPayload,
    ) -> tuple[int, int]:
        """
        Send push notification to multiple devices.

        Args:
            tokens: List of FCM tokens
            payload: Title, body, icon, click action and data

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not tokens:
            logger.warning("no_tokens_provided", title=payload.title)
            return 0, 0

        message = build_multicast_message(tokens, payload)
        response = await asyncio.to_thread(messaging.send_each_for_multicast, message)

        logger.info(
            "push_notification_sent",
            title=payload.title,
            success_count=response.success_count,
            failure_count=response.failure_count,
        )

        return response.success_count, response.failure_count

    @staticmethod
    async def send_notification_to_user(
        db: AsyncSession,
        user_id: str | UUID,
        payload: PushPayload,
    ) -> dict[str, Any]:
        """
        Send a notification to all active devices of a user and record it.

        Args:
            db: Database session
            user_id: Recipient user ID
            payload: Notification content

        Returns:
            ``{"success", "success_count", "failure_count", "error"}``
        """
        if isinstance(user_id, str):
            user_id = UUID(user_id)

        insert_stmt = notifications.insert().values(
            user_id=user_id,
            title=payload.title,
            body=payload.body,
            notification_type=payload.notification_type,
            icon=payload.icon,
            click_action=payload.click_action,
            data=payload.data,
            status="pending",
        )
        result = await db.execute(insert_stmt)
        notification_id = result.inserted_primary_key[0]

        query = select(push_tokens.c.fcm_token).where(
            push_tokens.c.user_id == user_id,
            push_tokens.c.is_active.is_(True),
        )
        fcm_tokens = list((await db.execute(query)).scalars().all())

        failure_reason = None
        if not fcm_tokens:
            failure_reason = "No active tokens for user"
        elif not is_firebase_initialized():
            failure_reason = "Push delivery is not configured"

        if failure_reason:
            logger.warning("notification_not_sent", user_id=str(user_id), reason=failure_reason)
            await db.execute(
                update(notifications)
                .where(notifications.c.id == notification_id)
                .values(status="failed", failure_reason=failure_reason)
            )
            await db.commit()
            return {"success": False, "success_count": 0, "failure_count": 0, "error": failure_reason}

        try:
            success_count, failure_count = await NotificationService.send_push_notification(
                fcm_tokens, payload
            )
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            logger.error("notification_send_failed", error=str(e), notification_id=str(notification_id))
            await db.execute(
                update(notifications)
                .where(notifications.c.id == notification_id)
                .values(status="failed", failure_reason=str(e), failure_count=len(fcm_tokens))
            )
            await db.commit()
            return {
                "success": False,
                "success_count": 0,
                "failure_count": len(fcm_tokens),
                "error": str(e),
            }

        await db.execute(
            update(notifications)
            .where(notifications.c.id == notification_id)
            .values(
                status="delivered" if success_count > 0 else "failed",
                success_count=success_count,
                failure_count=failure_count,
                sent_at=datetime.now(UTC),
            )
        )
        await db.commit()
        return {
            "success": success_count > 0,
            "success_count": success_count,
            "failure_count": failure_count,
            "error": None,
        }

    @staticmethod
    async def register_token(
        db: AsyncSession,
        user_id: UUID,
        fcm_token: str,
        platform: str,
    ) -> dict[str, Any]:
        """
        Register or update FCM token for a user.

        Args:
            db: Database session
            user_id: User ID
            fcm_token: FCM token
            platform: Platform (android, ios, web)

        Returns:
            Created/updated token record
        """
        # Deactivate old tokens for this user on the same platform
        await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.platform == platform,
                push_tokens.c.fcm_token != fcm_token,
            )
            .values(is_active=False)
        )

        query = select(push_tokens).where(
            push_tokens.c.user_id == user_id,
            push_tokens.c.fcm_token == fcm_token,
        )
        existing_token = (await db.execute(query)).first()

        if existing_token:
            token_id = existing_token.id
            await db.execute(
                update(push_tokens)
                .where(push_tokens.c.id == token_id)
                .values(is_active=True, last_used_at=datetime.now(UTC), platform=platform)
            )
        else:
            result = await db.execute(
                push_tokens.insert().values(
                    user_id=user_id,
                    fcm_token=fcm_token,
                    platform=platform,
                    is_active=True,
                    last_used_at=datetime.now(UTC),
                )
            )
            token_id = result.inserted_primary_key[0]

        await db.commit()

        result = await db.execute(select(push_tokens).where(push_tokens.c.id == token_id))
        return dict(result.first()._mapping)

    @staticmethod
    async def deactivate_token(
        db: AsyncSession,
        user_id: UUID,
        fcm_token: str,
    ) -> bool:
        """
        Deactivate a specific FCM token.

        Returns:
            True if token was deactivated
        """
        result = await db.execute(
            update(push_tokens)
            .where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.fcm_token == fcm_token,
            )
            .values(is_active=False)
        )
        await db.commit()
        return result.rowcount > 0
