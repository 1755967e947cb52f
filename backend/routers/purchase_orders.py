import logging
import uuid
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core import audit, ledger
from core.auth import can_see_costs, current_active_user, current_manager
from core.config import settings
from core.converters import minor_from_price, price_from_minor
from db.database import (
    get_async_session,
    utcnow,
    Product as ProductModel,
    PurchaseOrder as PurchaseOrderModel,
    PurchaseOrderItem as PurchaseOrderItemModel,
    Supplier as SupplierModel,
    User,
)
from routers.locations import get_location_or_404
from schemas.purchase_orders import (
    PurchaseOrderCreate,
    PurchaseOrderItemIn,
    PurchaseOrderItemRead,
    PurchaseOrderRead,
    PurchaseOrderStatus,
    PurchaseOrderStatusUpdate,
    PurchaseOrderUpdate,
    ReceiveRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Moves allowed through POST /{id}/status; receipts are handled by /receive.
ALLOWED_TRANSITIONS: Dict[str, set] = {
    "DRAFT": {"ORDERED", "CANCELLED"},
    "ORDERED": {"CANCELLED"},
    "PARTIALLY_RECEIVED": set(),
    "RECEIVED": set(),
    "CANCELLED": set(),
}
RECEIVABLE = {"ORDERED", "PARTIALLY_RECEIVED"}


def new_reference(prefix: str) -> str:
    return f"{prefix}-{utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def document_currency(products) -> str:
    """Every line of an order or sale must be priced in one currency."""
    currencies = {(p.currency or settings.default_currency).upper() for p in products}
    if len(currencies) > 1:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Lines mix currencies: {', '.join(sorted(currencies))}",
        )
    return currencies.pop()


def _serialize_order(o: PurchaseOrderModel, *, show_costs: bool = True) -> PurchaseOrderRead:
    items_out: List[PurchaseOrderItemRead] = []
    total_minor = 0
    has_costs = False
    for it in (o.items or []):
        p = getattr(it, "product", None)
        line_minor = None
        if it.unit_cost_minor is not None:
            line_minor = int(it.unit_cost_minor) * int(it.quantity_ordered)
            total_minor += line_minor
            has_costs = True
        items_out.append(
            PurchaseOrderItemRead(
                id=it.id,
                product_id=it.product_id,
                product_sku=getattr(p, "sku", None) if p else None,
                product_name=getattr(p, "name", None) if p else None,
                quantity_ordered=int(it.quantity_ordered),
                quantity_received=int(it.quantity_received or 0),
                unit_cost=price_from_minor(it.unit_cost_minor) if show_costs else None,
                line_total=price_from_minor(line_minor) if show_costs else None,
            )
        )
    supplier = getattr(o, "supplier", None)
    loc = getattr(o, "location", None)
    return PurchaseOrderRead(
        id=o.id,
        reference=o.reference,
        supplier_id=o.supplier_id,
        supplier_name=getattr(supplier, "name", None) if supplier else None,
        location_id=o.location_id,
        location_code=getattr(loc, "code", None) if loc else None,
        status=o.status,
        expected_date=o.expected_date,
        notes=o.notes,
        currency=o.currency,
        ordered_at=o.ordered_at,
        received_at=o.received_at,
        created_at=o.created_at,
        total=price_from_minor(total_minor) if (show_costs and has_costs) else None,
        items=items_out,
    )


async def _load_order(db: AsyncSession, order_id: UUID) -> PurchaseOrderModel:
    res = await db.execute(
        select(PurchaseOrderModel)
        .options(
            selectinload(PurchaseOrderModel.supplier),
            selectinload(PurchaseOrderModel.location),
            selectinload(PurchaseOrderModel.items).selectinload(PurchaseOrderItemModel.product),
        )
        .where(PurchaseOrderModel.id == order_id)
        .execution_options(populate_existing=True)
    )
    o = res.scalar_one_or_none()
    if not o:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Purchase order not found")
    return o


async def _build_items(db: AsyncSession, items: List[PurchaseOrderItemIn]) -> Tuple[List[PurchaseOrderItemModel], str]:
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
        unit_cost = minor_from_price(it.unit_cost) if it.unit_cost is not None else p.cost_price_minor
        out.append(PurchaseOrderItemModel(
            product_id=p.id,
            quantity_ordered=it.quantity,
            quantity_received=0,
            unit_cost_minor=unit_cost,
        ))
    return out, currency


@router.get("/", response_model=List[PurchaseOrderRead])
async def list_purchase_orders(
    status_filter: Optional[PurchaseOrderStatus] = Query(None, alias="status"),
    supplier_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(PurchaseOrderModel).options(
        selectinload(PurchaseOrderModel.supplier),
        selectinload(PurchaseOrderModel.location),
        selectinload(PurchaseOrderModel.items).selectinload(PurchaseOrderItemModel.product),
    )
    if status_filter:
        stmt = stmt.where(PurchaseOrderModel.status == status_filter)
    if supplier_id:
        stmt = stmt.where(PurchaseOrderModel.supplier_id == supplier_id)
    if location_id:
        stmt = stmt.where(PurchaseOrderModel.location_id == location_id)

    res = await db.execute(stmt.order_by(PurchaseOrderModel.created_at.desc()).limit(limit).offset(offset))
    show_costs = can_see_costs(user)
    return [_serialize_order(o, show_costs=show_costs) for o in res.scalars().all()]


@router.get("/{order_id}", response_model=PurchaseOrderRead)
async def get_purchase_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_order(await _load_order(db, order_id), show_costs=can_see_costs(user))


@router.post("/", response_model=PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    payload: PurchaseOrderCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    supplier = await db.get(SupplierModel, payload.supplier_id)
    if not supplier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    if not supplier.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier is inactive")
    await get_location_or_404(db, payload.location_id, active_only=True)

    o = PurchaseOrderModel(
        reference=new_reference("PO"),
        supplier_id=supplier.id,
        location_id=payload.location_id,
        status="DRAFT",
        expected_date=payload.expected_date,
        notes=payload.notes,
        created_by_user_id=user.id,
    )
    o.items, o.currency = await _build_items(db, payload.items)
    db.add(o)
    await db.flush()
    audit.record(
        db,
        user_id=user.id,
        action="CREATE",
        entity_type="purchase_order",
        entity_id=o.id,
        details={"reference": o.reference, "lines": len(payload.items)},
    )
    await db.commit()
    logger.info(f"Purchase order {o.reference} created")
    return _serialize_order(await _load_order(db, o.id))


@router.patch("/{order_id}", response_model=PurchaseOrderRead)
async def update_purchase_order(
    order_id: UUID,
    payload: PurchaseOrderUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    o = await _load_order(db, order_id)
    data = payload.model_dump(exclude_unset=True)

    if "items" in data and payload.items is not None:
        if o.status != "DRAFT":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Items can only be changed while DRAFT")
        o.items, o.currency = await _build_items(db, payload.items)
    if "expected_date" in data:
        o.expected_date = data["expected_date"]
    if "notes" in data:
        o.notes = data["notes"]

    audit.record(
        db,
        user_id=user.id,
        action="UPDATE",
        entity_type="purchase_order",
        entity_id=o.id,
        details={k: v for k, v in data.items() if k != "items"} | ({"items_replaced": True} if "items" in data else {}),
    )
    await db.commit()
    return _serialize_order(await _load_order(db, o.id))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_purchase_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    o = await _load_order(db, order_id)
    if o.status != "DRAFT":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only DRAFT orders can be deleted")
    await db.delete(o)
    audit.record(db, user_id=user.id, action="DELETE", entity_type="purchase_order", entity_id=order_id, details={"reference": o.reference})
    await db.commit()


@router.post("/{order_id}/status", response_model=PurchaseOrderRead)
async def change_purchase_order_status(
    order_id: UUID,
    payload: PurchaseOrderStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    o = await _load_order(db, order_id)
    old = o.status
    new = payload.status
    if new not in ALLOWED_TRANSITIONS.get(old, set()):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Cannot change status from {old} to {new}")

    o.status = new
    if new == "ORDERED":
        o.ordered_at = utcnow()
    audit.record(db, user_id=user.id, action="STATUS", entity_type="purchase_order", entity_id=o.id, details={"from": old, "to": new})
    await db.commit()
    logger.info(f"Purchase order {o.reference}: {old} -> {new}")
    return _serialize_order(await _load_order(db, o.id))


@router.post("/{order_id}/receive", response_model=PurchaseOrderRead)
async def receive_purchase_order(
    order_id: UUID,
    payload: Optional[ReceiveRequest] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """
    Book delivered goods into stock at the order's location.

    Without `lines`, every outstanding quantity is received.
    """
    o = await _load_order(db, order_id)
    if o.status not in RECEIVABLE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Cannot receive an order in status {o.status}")
    await get_location_or_404(db, o.location_id, active_only=True)

    items_by_id = {it.id: it for it in o.items}
    if payload is None or payload.lines is None:
        to_receive = [
            (it, int(it.quantity_ordered) - int(it.quantity_received or 0))
            for it in o.items
            if int(it.quantity_ordered) > int(it.quantity_received or 0)
        ]
    else:
        seen = set()
        to_receive = []
        for line in payload.lines:
            if line.item_id in seen:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Duplicate line {line.item_id}")
            seen.add(line.item_id)
            it = items_by_id.get(line.item_id)
            if it is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order item {line.item_id} not found")
            outstanding = int(it.quantity_ordered) - int(it.quantity_received or 0)
            if line.quantity > outstanding:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Over-receipt for item {it.id}. Outstanding={outstanding} received={line.quantity}",
                )
            to_receive.append((it, line.quantity))

    if not to_receive:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Nothing left to receive")

    for it, qty in to_receive:
        await ledger.apply_movement(
            db,
            product_id=it.product_id,
            location_id=o.location_id,
            change=qty,
            movement_type="RECEIPT",
            reason=f"Received on {o.reference}",
            source_type="purchase_order",
            source_id=o.id,
            user_id=user.id,
        )
        it.quantity_received = int(it.quantity_received or 0) + qty

    old = o.status
    if all(int(it.quantity_received or 0) >= int(it.quantity_ordered) for it in o.items):
        o.status = "RECEIVED"
        o.received_at = utcnow()
    else:
        o.status = "PARTIALLY_RECEIVED"

    audit.record(
        db,
        user_id=user.id,
        action="MOVEMENT",
        entity_type="purchase_order",
        entity_id=o.id,
        details={
            "received": {str(it.id): qty for it, qty in to_receive},
            "from": old,
            "to": o.status,
        },
    )
    await db.commit()
    logger.info(f"Purchase order {o.reference}: received {len(to_receive)} line(s), now {o.status}")
    return _serialize_order(await _load_order(db, o.id))
