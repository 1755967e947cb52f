import asyncio
import sys
from pathlib import Path

"""
Seed demo data (categories, suppliers, locations, products, opening stock).

Safe to run more than once: existing rows are matched by name/code/SKU and
opening stock is only posted for pairs that have no movements yet.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core import ledger
from core.config import settings
from core.converters import minor_from_price
from db.database import (
    async_session_maker,
    create_db_and_tables,
    Barcode,
    Category,
    InventoryMovement,
    Location,
    Product,
    Supplier,
)


CATEGORIES = ["Beverages", "Snacks", "Household"]

SUPPLIERS = [
    {"name": "Northwind Traders", "contact_name": "Anne Dodsworth", "email": "orders@northwind.example"},
    {"name": "Contoso Wholesale", "contact_name": "Li Wei", "email": "sales@contoso.example"},
]

LOCATIONS = [
    {"code": "WH-MAIN", "name": "Main warehouse"},
    {"code": "SHOP-1", "name": "High street shop"},
]

PRODUCTS = [
    {
        "sku": "BEV-COLA-330",
        "name": "Cola 330ml",
        "category": "Beverages",
        "supplier": "Northwind Traders",
        "cost": 0.35,
        "price": 1.20,
        "reorder": 48,
        "barcode": ("4006381333931", "EAN13"),
        "opening": {"WH-MAIN": 240, "SHOP-1": 36},
    },
    {
        "sku": "BEV-WATER-500",
        "name": "Still water 500ml",
        "category": "Beverages",
        "supplier": "Northwind Traders",
        "cost": 0.20,
        "price": 0.90,
        "reorder": 60,
        "barcode": None,
        "opening": {"WH-MAIN": 300, "SHOP-1": 24},
    },
    {
        "sku": "SNK-CHIPS-150",
        "name": "Salted chips 150g",
        "category": "Snacks",
        "supplier": "Contoso Wholesale",
        "cost": 0.80,
        "price": 2.10,
        "reorder": 20,
        "barcode": ("036000291452", "UPCA"),
        "opening": {"WH-MAIN": 120},
    },
    {
        "sku": "HH-SPONGE-3",
        "name": "Kitchen sponges (3 pack)",
        "category": "Household",
        "supplier": "Contoso Wholesale",
        "cost": 0.60,
        "price": 1.75,
        "reorder": 10,
        "barcode": None,
        "opening": {"WH-MAIN": 40, "SHOP-1": 5},
    },
]


async def get_or_create_category(session, name: str) -> Category:
    result = await session.execute(select(Category).where(func.lower(Category.name) == name.lower()))
    category = result.scalar_one_or_none()
    if category:
        return category
    category = Category(name=name)
    session.add(category)
    await session.flush()
    return category


async def get_or_create_supplier(session, data: dict) -> Supplier:
    result = await session.execute(select(Supplier).where(func.lower(Supplier.name) == data["name"].lower()))
    supplier = result.scalar_one_or_none()
    if supplier:
        return supplier
    supplier = Supplier(**data)
    session.add(supplier)
    await session.flush()
    return supplier


async def get_or_create_location(session, data: dict) -> Location:
    result = await session.execute(select(Location).where(Location.code == data["code"]))
    location = result.scalar_one_or_none()
    if location:
        return location
    location = Location(**data)
    session.add(location)
    await session.flush()
    return location


async def get_or_create_product(session, data: dict, category: Category, supplier: Supplier) -> Product:
    result = await session.execute(select(Product).where(Product.sku == data["sku"]))
    product = result.scalar_one_or_none()
    if product:
        return product
    product = Product(
        sku=data["sku"],
        name=data["name"],
        category_id=category.id,
        supplier_id=supplier.id,
        cost_price_minor=minor_from_price(data["cost"]),
        sale_price_minor=minor_from_price(data["price"]),
        currency=settings.default_currency,
        default_reorder_level=data["reorder"],
    )
    session.add(product)
    await session.flush()
    if data.get("barcode"):
        code, symbology = data["barcode"]
        exists = await session.execute(select(Barcode.id).where(Barcode.code == code))
        if exists.scalar_one_or_none() is None:
            session.add(Barcode(product_id=product.id, code=code, symbology=symbology))
            await session.flush()
    return product


async def post_opening_stock(session, product: Product, location: Location, quantity: int) -> bool:
    result = await session.execute(
        select(func.count(InventoryMovement.id)).where(
            InventoryMovement.product_id == product.id,
            InventoryMovement.location_id == location.id,
        )
    )
    if result.scalar_one() > 0:
        return False
    await ledger.apply_movement(
        session,
        product_id=product.id,
        location_id=location.id,
        change=quantity,
        movement_type="RECEIPT",
        reason="Opening stock",
        source_type="seed",
    )
    return True


async def seed(session) -> dict:
    """Insert the demo catalog and opening stock; returns counts of what was posted."""
    categories = {name: await get_or_create_category(session, name) for name in CATEGORIES}
    suppliers = {s["name"]: await get_or_create_supplier(session, s) for s in SUPPLIERS}
    locations = {loc["code"]: await get_or_create_location(session, loc) for loc in LOCATIONS}

    posted = 0
    for data in PRODUCTS:
        product = await get_or_create_product(
            session, data, categories[data["category"]], suppliers[data["supplier"]]
        )
        for code, qty in data["opening"].items():
            if await post_opening_stock(session, product, locations[code], qty):
                posted += 1

    await session.commit()
    return {"products": len(PRODUCTS), "opening_movements": posted}


async def main() -> None:
    await create_db_and_tables()
    async with async_session_maker() as session:
        counts = await seed(session)
    print(f"Seeded {counts['products']} products, posted {counts['opening_movements']} opening movements")


if __name__ == "__main__":
    asyncio.run(main())
