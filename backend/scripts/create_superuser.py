import argparse
import asyncio
import contextlib
import sys
from pathlib import Path

"""
Create an ADMIN superuser through the fastapi-users manager.

Usage: `python scripts/create_superuser.py admin@example.com s3cret --name "Site Admin"`
"""

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi_users.exceptions import UserAlreadyExists

from core.auth import get_user_manager
from db.database import create_db_and_tables, get_async_session
from db.users import get_user_db
from schemas.users import UserCreate

get_async_session_context = contextlib.asynccontextmanager(get_async_session)
get_user_db_context = contextlib.asynccontextmanager(get_user_db)
get_user_manager_context = contextlib.asynccontextmanager(get_user_manager)


async def create_superuser(email: str, password: str, full_name: str = None):
    async with get_async_session_context() as session:
        async with get_user_db_context(session) as user_db:
            async with get_user_manager_context(user_db) as user_manager:
                user = await user_manager.create(
                    UserCreate(email=email, password=password, full_name=full_name, is_superuser=True, is_verified=True)
                )
                user.role = "ADMIN"
                await session.commit()
                return user


async def main() -> None:
    parser = argparse.ArgumentParser(description="Create an ADMIN superuser")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", dest="full_name", default=None)
    args = parser.parse_args()

    await create_db_and_tables()
    try:
        user = await create_superuser(args.email, args.password, args.full_name)
    except UserAlreadyExists:
        print(f"User {args.email} already exists")
        sys.exit(1)
    print(f"Superuser created: {user.id} ({user.email})")


if __name__ == "__main__":
    asyncio.run(main())
