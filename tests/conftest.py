import os

# Settings are read once at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CLINIC_TIMEZONE"] = "UTC"
os.environ["LUNCH_BREAK_START"] = "14:00"
os.environ["LUNCH_BREAK_END"] = "15:00"
os.environ["ENRICHMENT_STEP_TIMEOUT"] = "2"
os.environ["ZOOM_ACCOUNT_ID"] = ""
os.environ["SMTP_USER"] = ""
os.environ["LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator, Callable
from datetime import date, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.realtime import RealtimeHub, get_realtime_hub
from app.core.security import create_access_token
from app.database import get_db
from app.dependencies import get_enrichment_orchestrator
from app.main import app
from app.models import metadata
from app.models.users import users
from app.services.enrichment import build_default_orchestrator

# One in-memory database shared by every connection of a test
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh schema."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture
def hub() -> RealtimeHub:
    """Realtime hub isolated to one test."""
    return RealtimeHub()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, hub: RealtimeHub) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with the real side-effect chain."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    orchestrator = build_default_orchestrator(hub=hub)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_enrichment_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_realtime_hub] = lambda: hub

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory inserting a user and returning its row."""

    async def _make_user(role: str, first_name: str, **values: Any) -> dict:
        user_id = values.pop("id", None) or uuid4()
        await db_session.execute(
            insert(users).values(
                id=user_id,
                email=f"{first_name.lower()}.{user_id.hex[:6]}@example.com",
                first_name=first_name,
                last_name=values.pop("last_name", "Test"),
                role=role,
                is_active=values.pop("is_active", True),
                **values,
            )
        )
        await db_session.commit()
        row = (await db_session.execute(select(users).where(users.c.id == user_id))).mappings().first()
        return dict(row)

    return _make_user


@pytest_asyncio.fixture
async def admin(make_user) -> dict:
    return await make_user("admin", "Ada")


@pytest_asyncio.fixture
async def dietitian(make_user) -> dict:
    return await make_user("dietitian", "Dana")


@pytest_asyncio.fixture
async def other_dietitian(make_user) -> dict:
    return await make_user("dietitian", "Dora")


@pytest_asyncio.fixture
async def counselor(make_user) -> dict:
    return await make_user("health_counselor", "Cole")


@pytest_asyncio.fixture
async def other_counselor(make_user) -> dict:
    return await make_user("health_counselor", "Cora")


@pytest_asyncio.fixture
async def assigned_client(make_user, dietitian) -> dict:
    """Client assigned to ``dietitian`` only."""
    return await make_user(
        "client",
        "Cleo",
        assigned_dietitian_id=dietitian["id"],
        assigned_dietitian_ids=[str(dietitian["id"])],
    )


@pytest_asyncio.fixture
async def unassigned_client(make_user) -> dict:
    return await make_user("client", "Uma")


def auth_headers_for(user: dict) -> dict:
    """Bearer headers for a user."""
    token = create_access_token(
        data={"sub": str(user["id"]), "email": user["email"]},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


def next_weekday(weekday: int, weeks_ahead: int = 2) -> date:
    """A future date falling on ``weekday`` (Monday is 0)."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    return start + timedelta(days=(weekday - start.weekday()) % 7)


def booking_payload(provider_id: UUID, client_id: UUID, scheduled_at: str, **extra: Any) -> dict:
    """Staff booking request body."""
    return {
        "dietitianId": str(provider_id),
        "clientId": str(client_id),
        "scheduledAt": scheduled_at,
        **extra,
    }
