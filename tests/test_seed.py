from sqlalchemy import func, select

from core import ledger
from db.database import InventoryMovement, Product
from scripts.seed_demo_data import PRODUCTS, seed


async def test_seed_is_idempotent(session):
    first = await seed(session)
    second = await seed(session)

    assert first["opening_movements"] == sum(len(p["opening"]) for p in PRODUCTS)
    assert second["opening_movements"] == 0

    products = (await session.execute(select(func.count(Product.id)))).scalar_one()
    movements = (await session.execute(select(func.count(InventoryMovement.id)))).scalar_one()
    assert products == len(PRODUCTS)
    assert movements == first["opening_movements"]
    assert await ledger.find_ledger_mismatches(session) == []
