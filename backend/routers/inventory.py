import logging
import traceback
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core import audit, ledger
from core.auth import current_active_user, current_manager
from core.converters import effective_reorder_level, is_low_stock
from db.database import (
    get_async_session,
    InventoryMovement as InventoryMovementModel,
    Location as LocationModel,
    Product as ProductModel,
    Stock as StockModel,
    User,
)
from routers.locations import get_location_or_404
from routers.products import get_product_or_404
from schemas.inventory import (
    InventoryAdjustmentCreate,
    InventoryMovementOut,
    InventoryTransferCreate,
    MovementType,
    StockLevelUpdate,
    StockOut,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def load_stock_rows(
    db: AsyncSession,
    *,
    location_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    include_inactive: bool = False,
) -> List[StockOut]:
    """Stock joined with product and location, with the effective reorder level applied."""
    stmt = (
        select(StockModel, ProductModel, LocationModel)
        .join(ProductModel, ProductModel.id == StockModel.product_id)
        .join(LocationModel, LocationModel.id == StockModel.location_id)
        .execution_options(populate_existing=True)
    )
    if location_id:
        stmt = stmt.where(StockModel.location_id == location_id)
    if product_id:
        stmt = stmt.where(StockModel.product_id == product_id)
    if not include_inactive:
        stmt = stmt.where(ProductModel.is_active == True, LocationModel.is_active == True)  # noqa: E712

    res = await db.execute(stmt.order_by(LocationModel.code.asc(), ProductModel.sku.asc()))
    out = []
    for st, p, loc in res.all():
        level = effective_reorder_level(st, p)
        qty = int(st.quantity or 0)
        out.append(StockOut(
            product_id=p.id,
            product_sku=p.sku,
            product_name=p.name,
            location_id=loc.id,
            location_code=loc.code,
            quantity=qty,
            reorder_level=level,
            is_low=is_low_stock(qty, level),
        ))
    return out


@router.get("/stock", response_model=List[StockOut])
async def list_stock(
    location_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    low_only: bool = False,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await load_stock_rows(db, location_id=location_id, product_id=product_id, include_inactive=include_inactive)
    if low_only:
        rows = [r for r in rows if r.is_low]
    return rows


@router.get("/stock/{product_id}", response_model=Dict)
async def get_stock_for_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Stock for a single product in every location that has a stock row."""
    p = await get_product_or_404(db, product_id)
    rows = await load_stock_rows(db, product_id=p.id, include_inactive=True)
    return {
        "product_id": p.id,
        "sku": p.sku,
        "name": p.name,
        "total_quantity": sum(r.quantity for r in rows),
        "locations": [r.model_dump() for r in rows],
    }


@router.patch("/stock/{product_id}/{location_id}", response_model=StockOut)
async def update_stock_level(
    product_id: UUID,
    location_id: UUID,
    payload: StockLevelUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Set the reorder threshold for one product at one location. Quantity is ledger-only."""
    p = await get_product_or_404(db, product_id)
    loc = await get_location_or_404(db, location_id)

    res = await db.execute(
        select(StockModel).where(StockModel.product_id == p.id, StockModel.location_id == loc.id)
    )
    st = res.scalar_one_or_none()
    if st is None:
        st = StockModel(product_id=p.id, location_id=loc.id, quantity=0)
        db.add(st)
    st.reorder_level = payload.reorder_level

    audit.record(
        db,
        user_id=user.id,
        action="UPDATE",
        entity_type="stock",
        entity_id=f"{p.id}:{loc.id}",
        details={"reorder_level": payload.reorder_level},
    )
    await db.commit()

    level = effective_reorder_level(st, p)
    return StockOut(
        product_id=p.id,
        product_sku=p.sku,
        product_name=p.name,
        location_id=loc.id,
        location_code=loc.code,
        quantity=int(st.quantity or 0),
        reorder_level=level,
        is_low=is_low_stock(int(st.quantity or 0), level),
    )


@router.post("/adjustments", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    payload: InventoryAdjustmentCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Manual correction (count differences, damage, shrinkage)."""
    try:
        await get_product_or_404(db, payload.product_id)
        await get_location_or_404(db, payload.location_id, active_only=True)

        out = await ledger.apply_movement(
            db,
            product_id=payload.product_id,
            location_id=payload.location_id,
            change=payload.change,
            movement_type="ADJUSTMENT",
            reason=payload.reason,
            source_type="manual",
            user_id=user.id,
        )
        audit.record(
            db,
            user_id=user.id,
            action="MOVEMENT",
            entity_type="inventory_movement",
            entity_id=out["movement"]["id"],
            details={"type": "ADJUSTMENT", "change": payload.change, "reason": payload.reason},
        )
        await db.commit()
        return out
    except HTTPException:
        # Uncommitted work is rolled back when the session closes.
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"[inventory] create_adjustment failed: {e!r}\n{traceback.format_exc()}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to create adjustment: {e}")


@router.post("/transfers", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: InventoryTransferCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """
    Move stock between two locations.

    - Creates two movement rows (TRANSFER_OUT at the source, TRANSFER_IN at the destination).
    - The source must hold enough quantity.
    """
    try:
        await get_product_or_404(db, payload.product_id)
        await get_location_or_404(db, payload.from_location_id)
        await get_location_or_404(db, payload.to_location_id, active_only=True)

        out = await ledger.transfer(
            db,
            product_id=payload.product_id,
            from_location_id=payload.from_location_id,
            to_location_id=payload.to_location_id,
            quantity=payload.quantity,
            reason=payload.reason,
            user_id=user.id,
        )
        audit.record(
            db,
            user_id=user.id,
            action="MOVEMENT",
            entity_type="transfer",
            entity_id=out["transfer_id"],
            details={
                "product_id": payload.product_id,
                "from": payload.from_location_id,
                "to": payload.to_location_id,
                "quantity": payload.quantity,
            },
        )
        await db.commit()
        return out
    except HTTPException:
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"[inventory] create_transfer failed: {e!r}\n{traceback.format_exc()}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to create transfer: {e}")


@router.get("/movements", response_model=List[InventoryMovementOut])
async def list_movements(
    product_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    movement_type: Optional[MovementType] = None,
    source_type: Optional[str] = None,
    source_id: Optional[UUID] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(InventoryMovementModel)
    if product_id:
        stmt = stmt.where(InventoryMovementModel.product_id == product_id)
    if location_id:
        stmt = stmt.where(InventoryMovementModel.location_id == location_id)
    if movement_type:
        stmt = stmt.where(InventoryMovementModel.movement_type == movement_type)
    if source_type:
        stmt = stmt.where(InventoryMovementModel.source_type == source_type)
    if source_id:
        stmt = stmt.where(InventoryMovementModel.source_id == source_id)
    if start:
        stmt = stmt.where(InventoryMovementModel.created_at >= start)
    if end:
        stmt = stmt.where(InventoryMovementModel.created_at < end)

    res = await db.execute(
        stmt.order_by(InventoryMovementModel.created_at.desc(), InventoryMovementModel.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [InventoryMovementOut.model_validate(m) for m in res.scalars().all()]


@router.get("/ledger-check", response_model=Dict)
async def ledger_check(
    product_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Compare each stock row with the sum of its recorded movements."""
    mismatches = await ledger.find_ledger_mismatches(db, product_id=product_id, location_id=location_id)
    return {"ok": not mismatches, "mismatches": mismatches}
