"""
Stock ledger.

Every change to Stock.quantity goes through apply_movement(), which appends an
InventoryMovement and upserts the matching Stock row in the same transaction.
For every (product, location) pair, Stock.quantity == SUM(movement.change).
"""

import logging
import uuid
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import InventoryMovement, Stock, utcnow
from db.inventory.movement import MOVEMENT_TYPES

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for stock upsert: {dialect}")


async def current_quantity(db: AsyncSession, product_id: UUID, location_id: UUID) -> int:
    res = await db.execute(
        select(Stock.quantity).where(
            Stock.product_id == product_id,
            Stock.location_id == location_id,
        )
    )
    q = res.scalar_one_or_none()
    return int(q or 0)


async def apply_movement(
    db: AsyncSession,
    *,
    product_id: UUID,
    location_id: UUID,
    change: int,
    movement_type: str,
    reason: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[UUID] = None,
    transfer_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
) -> dict:
    """
    Record one movement and update stock.

    Raises 400 for a zero change or unknown type and 409 when the resulting
    quantity would be negative. Never commits.
    """
    delta = int(change)
    if delta == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="change must not be 0")
    movement_type = (movement_type or "").strip().upper()
    if movement_type not in MOVEMENT_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown movement type: {movement_type}")

    if delta < 0:
        available = await current_quantity(db, product_id, location_id)
        if available + delta < 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Not enough stock for product {product_id}. Available={available} requested={-delta}",
            )

    movement_id = uuid.uuid4()
    db.add(
        InventoryMovement(
            id=movement_id,
            product_id=product_id,
            location_id=location_id,
            change=delta,
            movement_type=movement_type,
            reason=reason,
            source_type=source_type,
            source_id=source_id,
            transfer_id=transfer_id,
            created_by_user_id=user_id,
        )
    )
    # Flush so the movement row precedes the stock write
    await db.flush()

    stock_tbl = Stock.__table__
    now = utcnow()
    upsert = (
        _insert_for(db)(stock_tbl)
        .values(
            id=uuid.uuid4(),
            product_id=product_id,
            location_id=location_id,
            quantity=delta,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=[stock_tbl.c.product_id, stock_tbl.c.location_id],
            set_={"quantity": stock_tbl.c.quantity + delta, "updated_at": now},
        )
        .returning(stock_tbl.c.quantity, stock_tbl.c.reorder_level)
    )
    upserted = (await db.execute(upsert)).first()
    new_quantity = int(upserted.quantity) if upserted else 0
    if new_quantity < 0:
        # Concurrent writer got there first
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Not enough stock for product {product_id}. Available={new_quantity - delta} requested={-delta}",
        )

    logger.info(
        f"[ledger] {movement_type} {delta:+d} product={product_id} location={location_id} -> {new_quantity}"
    )
    return {
        "movement": {
            "id": movement_id,
            "product_id": product_id,
            "location_id": location_id,
            "change": delta,
            "movement_type": movement_type,
            "reason": reason,
            "source_type": source_type,
            "source_id": source_id,
            "transfer_id": transfer_id,
            "created_by_user_id": user_id,
        },
        "stock": {
            "product_id": product_id,
            "location_id": location_id,
            "quantity": new_quantity,
            "reorder_level": upserted.reorder_level if upserted else None,
        },
    }


async def transfer(
    db: AsyncSession,
    *,
    product_id: UUID,
    from_location_id: UUID,
    to_location_id: UUID,
    quantity: int,
    reason: Optional[str] = None,
    user_id: Optional[UUID] = None,
) -> dict:
    qty = int(quantity)
    if qty <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="quantity must be > 0")
    if from_location_id == to_location_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="from and to locations must differ")

    transfer_id = uuid.uuid4()
    out_from = await apply_movement(
        db,
        product_id=product_id,
        location_id=from_location_id,
        change=-qty,
        movement_type="TRANSFER_OUT",
        reason=reason or "TRANSFER",
        source_type="transfer",
        source_id=transfer_id,
        transfer_id=transfer_id,
        user_id=user_id,
    )
    out_to = await apply_movement(
        db,
        product_id=product_id,
        location_id=to_location_id,
        change=qty,
        movement_type="TRANSFER_IN",
        reason=reason or "TRANSFER",
        source_type="transfer",
        source_id=transfer_id,
        transfer_id=transfer_id,
        user_id=user_id,
    )
    return {"transfer_id": transfer_id, "from": out_from, "to": out_to}


async def find_ledger_mismatches(
    db: AsyncSession,
    product_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
) -> List[Dict]:
    """Pairs whose stock quantity differs from the sum of their movements."""
    mv_stmt = select(
        InventoryMovement.product_id,
        InventoryMovement.location_id,
        func.coalesce(func.sum(InventoryMovement.change), 0).label("total"),
    ).group_by(InventoryMovement.product_id, InventoryMovement.location_id)
    st_stmt = select(Stock.product_id, Stock.location_id, Stock.quantity)
    if product_id:
        mv_stmt = mv_stmt.where(InventoryMovement.product_id == product_id)
        st_stmt = st_stmt.where(Stock.product_id == product_id)
    if location_id:
        mv_stmt = mv_stmt.where(InventoryMovement.location_id == location_id)
        st_stmt = st_stmt.where(Stock.location_id == location_id)

    ledger: Dict[tuple, int] = {
        (r.product_id, r.location_id): int(r.total) for r in (await db.execute(mv_stmt)).all()
    }
    on_hand: Dict[tuple, int] = {
        (r.product_id, r.location_id): int(r.quantity or 0) for r in (await db.execute(st_stmt)).all()
    }

    out = []
    for key in sorted(set(ledger) | set(on_hand), key=lambda k: (str(k[0]), str(k[1]))):
        expected = ledger.get(key, 0)
        actual = on_hand.get(key, 0)
        if expected != actual:
            out.append({
                "product_id": key[0],
                "location_id": key[1],
                "stock_quantity": actual,
                "movement_total": expected,
                "difference": actual - expected,
            })
    if out:
        logger.warning(f"[ledger] {len(out)} stock rows disagree with their movements")
    return out
