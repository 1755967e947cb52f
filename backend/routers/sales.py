import logging
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core import audit, ledger
from core.auth import current_active_user, current_manager
from core.converters import minor_from_price, price_from_minor
from db.database import (
    get_async_session,
    utcnow,
    Product as ProductModel,
    Sale as SaleModel,
    SaleItem as SaleItemModel,
    User,
)
from routers.locations import get_location_or_404
from routers.purchase_orders import document_currency, new_reference
from schemas.sales import SaleCreate, SaleItemIn, SaleItemRead, SaleRead, SaleStatus, SaleUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_sale(s: SaleModel) -> SaleRead:
    items_out: List[SaleItemRead] = []
    for it in (s.items or []):
        p = getattr(it, "product", None)
        items_out.append(
            SaleItemRead(
                id=it.id,
                product_id=it.product_id,
                product_sku=getattr(p, "sku", None) if p else None,
                product_name=getattr(p, "name", None) if p else None,
                quantity=int(it.quantity),
                unit_price=price_from_minor(it.unit_price_minor),
                line_total=price_from_minor(int(it.quantity) * int(it.unit_price_minor or 0)),
            )
        )
    loc = getattr(s, "location", None)
    return SaleRead(
        id=s.id,
        reference=s.reference,
        location_id=s.location_id,
        location_code=getattr(loc, "code", None) if loc else None,
        customer_name=s.customer_name,
        status=s.status,
        currency=s.currency,
        notes=s.notes,
        completed_at=s.completed_at,
        created_at=s.created_at,
        total=price_from_minor(s.total_minor),
        items=items_out,
    )


async def _load_sale(db: AsyncSession, sale_id: UUID) -> SaleModel:
    res = await db.execute(
        select(SaleModel)
        .options(
            selectinload(SaleModel.location),
            selectinload(SaleModel.items).selectinload(SaleItemModel.product),
        )
        .where(SaleModel.id == sale_id)
        .execution_options(populate_existing=True)
    )
    s = res.scalar_one_or_none()
    if not s:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
    return s


async def _build_items(db: AsyncSession, items: List[SaleItemIn]) -> Tuple[List[SaleItemModel], str]:
    ids = [it.product_id for it in items]
    res = await db.execute(select(ProductModel).where(ProductModel.id.in_(ids)))
    products = {p.id: p for p in res.scalars().all()}
    missing = [str(i) for i in ids if i not in products]
    if missing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown products: {', '.join(missing)}")
    inactive = [products[i].sku for i in ids if not products[i].is_active]
    if inactive:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Inactive products: {', '.join(inactive)}")
    currency = document_currency(products.values())

    out = []
    for it in items:
        p = products[it.product_id]
        price = minor_from_price(it.unit_price) if it.unit_price is not None else p.sale_price_minor
        if price is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Product {p.sku} has no sale price; pass unit_price")
        out.append(SaleItemModel(product_id=p.id, quantity=it.quantity, unit_price_minor=price))
    return out, currency


def _require_status(s: SaleModel, *allowed: str) -> None:
    if s.status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Sale {s.reference} is {s.status}; expected {' or '.join(allowed)}",
        )


@router.get("/", response_model=List[SaleRead])
async def list_sales(
    status_filter: Optional[SaleStatus] = Query(None, alias="status"),
    location_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(SaleModel).options(
        selectinload(SaleModel.location),
        selectinload(SaleModel.items).selectinload(SaleItemModel.product),
    )
    if status_filter:
        stmt = stmt.where(SaleModel.status == status_filter)
    if location_id:
        stmt = stmt.where(SaleModel.location_id == location_id)
    res = await db.execute(stmt.order_by(SaleModel.created_at.desc()).limit(limit).offset(offset))
    return [_serialize_sale(s) for s in res.scalars().all()]


@router.get("/{sale_id}", response_model=SaleRead)
async def get_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_sale(await _load_sale(db, sale_id))


@router.post("/", response_model=SaleRead, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    await get_location_or_404(db, payload.location_id, active_only=True)

    s = SaleModel(
        reference=new_reference("SO"),
        location_id=payload.location_id,
        customer_name=payload.customer_name,
        status="DRAFT",
        notes=payload.notes,
        created_by_user_id=user.id,
    )
    s.items, s.currency = await _build_items(db, payload.items)
    db.add(s)
    await db.flush()
    audit.record(db, user_id=user.id, action="CREATE", entity_type="sale", entity_id=s.id, details={"reference": s.reference})
    await db.commit()
    return _serialize_sale(await _load_sale(db, s.id))


@router.patch("/{sale_id}", response_model=SaleRead)
async def update_sale(
    sale_id: UUID,
    payload: SaleUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    s = await _load_sale(db, sale_id)
    _require_status(s, "DRAFT")
    data = payload.model_dump(exclude_unset=True)
    if "customer_name" in data:
        s.customer_name = data["customer_name"]
    if "notes" in data:
        s.notes = data["notes"]
    if payload.items is not None:
        s.items, s.currency = await _build_items(db, payload.items)

    audit.record(db, user_id=user.id, action="UPDATE", entity_type="sale", entity_id=s.id, details={k: v for k, v in data.items() if k != "items"})
    await db.commit()
    return _serialize_sale(await _load_sale(db, s.id))


@router.delete("/{sale_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    s = await _load_sale(db, sale_id)
    _require_status(s, "DRAFT")
    await db.delete(s)
    audit.record(db, user_id=user.id, action="DELETE", entity_type="sale", entity_id=sale_id, details={"reference": s.reference})
    await db.commit()


@router.post("/{sale_id}/complete", response_model=SaleRead)
async def complete_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Take the sold quantities out of stock. A shortage on any line aborts the whole sale."""
    s = await _load_sale(db, sale_id)
    _require_status(s, "DRAFT")
    await get_location_or_404(db, s.location_id, active_only=True)

    for it in s.items:
        await ledger.apply_movement(
            db,
            product_id=it.product_id,
            location_id=s.location_id,
            change=-int(it.quantity),
            movement_type="SALE",
            reason=f"Sale {s.reference}",
            source_type="sale",
            source_id=s.id,
            user_id=user.id,
        )

    s.status = "COMPLETED"
    s.completed_at = utcnow()
    audit.record(db, user_id=user.id, action="STATUS", entity_type="sale", entity_id=s.id, details={"from": "DRAFT", "to": "COMPLETED"})
    await db.commit()
    logger.info(f"Sale {s.reference} completed ({len(s.items)} line(s))")
    return _serialize_sale(await _load_sale(db, s.id))


@router.post("/{sale_id}/cancel", response_model=SaleRead)
async def cancel_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    s = await _load_sale(db, sale_id)
    _require_status(s, "DRAFT")
    s.status = "CANCELLED"
    audit.record(db, user_id=user.id, action="STATUS", entity_type="sale", entity_id=s.id, details={"from": "DRAFT", "to": "CANCELLED"})
    await db.commit()
    return _serialize_sale(await _load_sale(db, s.id))


@router.post("/{sale_id}/refund", response_model=SaleRead)
async def refund_sale(
    sale_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Full refund: every sold quantity is returned to the sale's location."""
    s = await _load_sale(db, sale_id)
    _require_status(s, "COMPLETED")

    for it in s.items:
        await ledger.apply_movement(
            db,
            product_id=it.product_id,
            location_id=s.location_id,
            change=int(it.quantity),
            movement_type="RETURN",
            reason=f"Refund of {s.reference}",
            source_type="sale",
            source_id=s.id,
            user_id=user.id,
        )

    s.status = "REFUNDED"
    audit.record(db, user_id=user.id, action="STATUS", entity_type="sale", entity_id=s.id, details={"from": "COMPLETED", "to": "REFUNDED"})
    await db.commit()
    logger.info(f"Sale {s.reference} refunded")
    return _serialize_sale(await _load_sale(db, s.id))
