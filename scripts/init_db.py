"""Create the schema and optionally seed demo users.

Usage:
    python scripts/init_db.py            # create tables
    python scripts/init_db.py --seed     # also add demo admin, providers and a client
"""

import argparse
import asyncio
import uuid

from sqlalchemy import insert, text

from app.core.security import create_access_token
from app.database import engine
from app.models import metadata, users

WEEKDAY_HOURS = [
    {"day": day, "startTime": "09:00", "endTime": "17:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
]


def _demo_users() -> list[dict]:
    dietitian_id = uuid.uuid4()
    counselor_id = uuid.uuid4()
    return [
        {"id": uuid.uuid4(), "email": "admin@example.com", "first_name": "Ada", "role": "admin"},
        {
            "id": dietitian_id,
            "email": "dietitian@example.com",
            "first_name": "Dana",
            "last_name": "Diet",
            "role": "dietitian",
            "availability": WEEKDAY_HOURS,
        },
        {
            "id": counselor_id,
            "email": "counselor@example.com",
            "first_name": "Cole",
            "last_name": "Counsel",
            "role": "health_counselor",
        },
        {
            "id": uuid.uuid4(),
            "email": "client@example.com",
            "first_name": "Cleo",
            "last_name": "Client",
            "role": "client",
            "assigned_dietitian_id": dietitian_id,
            "assigned_dietitian_ids": [str(dietitian_id)],
        },
    ]


async def init_db(seed: bool = False) -> None:
    """Create all tables, then insert demo users when asked."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)
        print("✓ Database initialized successfully!")

        if seed:
            demo = _demo_users()
            for user in demo:
                await conn.execute(insert(users).values(**user))
            print("✓ Demo users created:")
            for user in demo:
                token = create_access_token({"sub": str(user["id"])})
                print(f"   {user['role']:<17} {user['email']:<24} {token}")

    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialize the booking database")
    parser.add_argument("--seed", action="store_true", help="Insert demo users")
    args = parser.parse_args()
    asyncio.run(init_db(seed=args.seed))


if __name__ == "__main__":
    main()
