"""Cross-cutting client activity log."""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user_history import user_history

logger = structlog.get_logger()


class HistoryService:
    """Writes entries to a user's activity history."""

    @staticmethod
    async def log_history(
        db: AsyncSession,
        user_id: UUID,
        action: str,
        category: str,
        description: str,
        performed_by_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """
        Append an activity entry for a user.

        Args:
            db: Database session
            user_id: User the entry belongs to
            action: Short verb, e.g. ``appointment_booked``
            category: Grouping, e.g. ``appointment``
            description: Human readable summary
            performed_by_id: Who did it
            metadata: Extra JSON context

        Returns:
            Id of the new entry
        """
        result = await db.execute(
            user_history.insert().values(
                user_id=user_id,
                action=action,
                category=category,
                description=description,
                performed_by_id=performed_by_id,
                metadata=metadata,
            )
        )
        await db.commit()
        entry_id = result.inserted_primary_key[0]
        logger.info("history_logged", user_id=str(user_id), action=action)
        return entry_id
