"""Shared fixtures: a fresh SQLite database per test, real JWTs, and an ASGI client."""

import os
from types import SimpleNamespace

# Settings are read at import time; point the app at SQLite before anything imports it.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SEND_EMAILS", "false")

import pytest
from fastapi_users.password import PasswordHelper
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.auth import get_jwt_strategy
from db.database import (
    Base,
    get_async_session,
    Category,
    Location,
    Product,
    Supplier,
    User,
)
from main import app

PASSWORD = "correct horse battery"
password_helper = PasswordHelper()


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stockroom.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
async def client(session_maker):
    async def _override_session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_async_session] = _override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def make_user(session, email: str, role: str = "STAFF", *, superuser: bool = False) -> User:
    user = User(
        email=email,
        hashed_password=password_helper.hash(PASSWORD),
        is_active=True,
        is_superuser=superuser,
        is_verified=True,
        role=role,
    )
    session.add(user)
    await session.commit()
    return user


async def auth_headers(user: User) -> dict:
    token = await get_jwt_strategy().write_token(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def users(session):
    return SimpleNamespace(
        admin=await make_user(session, "admin@example.com", "ADMIN"),
        manager=await make_user(session, "manager@example.com", "MANAGER"),
        staff=await make_user(session, "staff@example.com", "STAFF"),
    )


@pytest.fixture
async def headers(users):
    return SimpleNamespace(
        admin=await auth_headers(users.admin),
        manager=await auth_headers(users.manager),
        staff=await auth_headers(users.staff),
    )


@pytest.fixture
async def catalog(session):
    """One category, supplier and product plus two active locations."""
    category = Category(name="Beverages")
    supplier = Supplier(name="Northwind Traders", email="orders@northwind.example")
    warehouse = Location(code="WH-MAIN", name="Main warehouse")
    shop = Location(code="SHOP-1", name="High street shop")
    session.add_all([category, supplier, warehouse, shop])
    await session.flush()

    product = Product(
        sku="BEV-COLA-330",
        name="Cola 330ml",
        category_id=category.id,
        supplier_id=supplier.id,
        cost_price_minor=35,
        sale_price_minor=120,
        currency="USD",
        default_reorder_level=10,
    )
    session.add(product)
    await session.commit()
    return SimpleNamespace(category=category, supplier=supplier, warehouse=warehouse, shop=shop, product=product)
