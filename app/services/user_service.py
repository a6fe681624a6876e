"""User directory: lookups and assignment bookkeeping for booking."""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import String, cast, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ProviderNotFoundException
from app.models.base import utcnow
from app.models.users import users
from app.schemas.appointments import PROVIDER_ROLES, UserRole


class UserDirectory:
    """Read access to users plus the few writes booking needs."""

    def __init__(self, db: AsyncSession):
        """Initialize directory with database session."""
        self.db = db

    @staticmethod
    def display_name(user: dict[str, Any] | None) -> str:
        """Full name of a user, falling back to email."""
        if not user:
            return "Unknown"
        name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        return name or user.get("email") or "Unknown"

    @staticmethod
    def assigned_provider_ids(client: dict[str, Any]) -> set[str]:
        """All provider ids a client is assigned to, as strings."""
        ids = {str(pid) for pid in client.get("assigned_dietitian_ids") or []}
        if client.get("assigned_dietitian_id"):
            ids.add(str(client["assigned_dietitian_id"]))
        if client.get("assigned_health_counselor_id"):
            ids.add(str(client["assigned_health_counselor_id"]))
        return ids

    @staticmethod
    def is_assigned_to_dietitian(client: dict[str, Any], dietitian_id: UUID) -> bool:
        """Check direct or multi-assignment of a client to a dietitian."""
        if client.get("assigned_dietitian_id") == dietitian_id:
            return True
        return str(dietitian_id) in {str(pid) for pid in client.get("assigned_dietitian_ids") or []}

    async def get_user(self, user_id: UUID) -> dict | None:
        """Get an active user by id."""
        query = select(users).where(users.c.id == user_id, users.c.is_active.is_(True))
        result = await self.db.execute(query)
        user = result.mappings().first()
        return dict(user) if user else None

    async def get_users(self, user_ids: Iterable[UUID]) -> dict[UUID, dict]:
        """Get several users keyed by id."""
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(users).where(users.c.id.in_(ids)))
        return {row["id"]: dict(row) for row in result.mappings().all()}

    async def get_client(self, client_id: UUID) -> dict | None:
        """Get a user only if they hold the client role."""
        user = await self.get_user(client_id)
        if user is None or user["role"] != UserRole.CLIENT.value:
            return None
        return user

    async def find_provider(self, provider_id: UUID) -> dict | None:
        """Get a user only if they are a dietitian or health counselor."""
        user = await self.get_user(provider_id)
        if user is None or user["role"] not in PROVIDER_ROLES:
            return None
        return user

    async def get_provider(self, provider_id: UUID) -> dict:
        """
        Resolve a provider.

        Raises:
            ProviderNotFoundException: If the id is not a bookable provider
        """
        provider = await self.find_provider(provider_id)
        if provider is None:
            raise ProviderNotFoundException()
        return provider

    async def lock_provider(self, provider_id: UUID) -> None:
        """Take a row lock on the provider for the rest of the transaction."""
        await self.db.execute(
            select(users.c.id).where(users.c.id == provider_id).with_for_update()
        )

    async def assigned_client_ids(self, provider_id: UUID) -> list[UUID]:
        """
        Ids of clients assigned to a provider.

        Args:
            provider_id: Dietitian or health counselor id

        Returns:
            Client ids with a direct, multi or counselor assignment
        """
        query = select(
            users.c.id,
            users.c.assigned_dietitian_id,
            users.c.assigned_dietitian_ids,
            users.c.assigned_health_counselor_id,
        ).where(
            users.c.role == UserRole.CLIENT.value,
            or_(
                users.c.assigned_dietitian_id == provider_id,
                users.c.assigned_health_counselor_id == provider_id,
                cast(users.c.assigned_dietitian_ids, String).like(f"%{provider_id}%"),
            ),
        )
        result = await self.db.execute(query)
        client_ids = []
        for row in result.mappings().all():
            # LIKE over the JSON text can over-match; confirm in Python
            if str(provider_id) in self.assigned_provider_ids(dict(row)):
                client_ids.append(row["id"])
        return client_ids

    async def assign_health_counselor(self, client_id: UUID, counselor_id: UUID) -> bool:
        """
        Assign a counselor to a client unless another counselor already holds it.

        Safe to call repeatedly with the same counselor.

        Returns:
            True if the client is (now) assigned to ``counselor_id``
        """
        stmt = (
            update(users)
            .where(
                users.c.id == client_id,
                or_(
                    users.c.assigned_health_counselor_id.is_(None),
                    users.c.assigned_health_counselor_id == counselor_id,
                ),
            )
            .values(assigned_health_counselor_id=counselor_id, updated_at=utcnow())
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    async def update_availability(
        self, provider_id: UUID, availability: list[dict[str, str]]
    ) -> dict:
        """Replace a provider's weekly availability windows."""
        await self.db.execute(
            update(users)
            .where(users.c.id == provider_id)
            .values(availability=availability, updated_at=utcnow())
        )
        await self.db.commit()
        return await self.get_provider(provider_id)
