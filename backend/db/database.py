from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


engine = create_async_engine(settings.database_url, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


# Models are imported last so each of them can import Base from here.
from .users import User, OAuthAccount  # noqa: E402
from .category import Category  # noqa: E402
from .supplier import Supplier  # noqa: E402
from .location import Location  # noqa: E402
from .product import Product, Barcode  # noqa: E402
from .inventory.stock import Stock  # noqa: E402
from .inventory.movement import InventoryMovement  # noqa: E402
from .purchase_order import PurchaseOrder, PurchaseOrderItem  # noqa: E402
from .sale import Sale, SaleItem  # noqa: E402
from .audit_log import AuditLog  # noqa: E402

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "create_db_and_tables",
    "get_async_session",
    "utcnow",
    "User",
    "OAuthAccount",
    "Category",
    "Supplier",
    "Location",
    "Product",
    "Barcode",
    "Stock",
    "InventoryMovement",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "Sale",
    "SaleItem",
    "AuditLog",
]
