from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, current_manager
from core.config import settings
from core.converters import price_from_minor
from core.exports import csv_response, pdf_table_response
from db.database import (
    get_async_session,
    InventoryMovement as InventoryMovementModel,
    Location as LocationModel,
    Product as ProductModel,
    Sale as SaleModel,
    SaleItem as SaleItemModel,
    Stock as StockModel,
    User,
)
from routers.inventory import load_stock_rows

router = APIRouter()


def _date_bounds(start: Optional[date], end: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive calendar dates -> half-open datetime range."""
    if start and end and end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")
    lo = datetime.combine(start, time.min) if start else None
    hi = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return lo, hi


@router.get("/low-stock", response_model=List[Dict])
async def low_stock_report(
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await load_stock_rows(db, location_id=location_id)
    out = []
    for r in rows:
        if not r.is_low:
            continue
        d = r.model_dump()
        d["shortfall"] = max(int(r.reorder_level or 0) - int(r.quantity), 0)
        out.append(d)
    return out


async def _valuation_rows(db: AsyncSession, location_id: Optional[UUID]) -> List[Dict]:
    stmt = (
        select(
            ProductModel.id,
            ProductModel.sku,
            ProductModel.name,
            ProductModel.cost_price_minor,
            ProductModel.currency,
            LocationModel.id.label("location_id"),
            LocationModel.code.label("location_code"),
            StockModel.quantity,
        )
        .join(ProductModel, ProductModel.id == StockModel.product_id)
        .join(LocationModel, LocationModel.id == StockModel.location_id)
        .where(StockModel.quantity != 0)
    )
    if location_id:
        stmt = stmt.where(StockModel.location_id == location_id)
    res = await db.execute(stmt.order_by(LocationModel.code.asc(), ProductModel.sku.asc()))

    out = []
    for r in res.all():
        value_minor = int(r.quantity) * int(r.cost_price_minor or 0)
        out.append({
            "product_id": r.id,
            "sku": r.sku,
            "name": r.name,
            "location_id": r.location_id,
            "location_code": r.location_code,
            "quantity": int(r.quantity),
            "unit_cost": price_from_minor(r.cost_price_minor),
            "currency": r.currency,
            "value": price_from_minor(value_minor),
            "value_minor": value_minor,
        })
    return out


@router.get("/stock-valuation", response_model=Dict)
async def stock_valuation_report(
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """On-hand quantity valued at product cost price."""
    rows = await _valuation_rows(db, location_id)
    total_minor = sum(r["value_minor"] for r in rows)
    by_currency: Dict[str, int] = {}
    for r in rows:
        cur = r["currency"] or settings.default_currency
        by_currency[cur] = by_currency.get(cur, 0) + r["value_minor"]
    return {
        "rows": rows,
        "total_value": price_from_minor(total_minor),
        "totals_by_currency": {cur: price_from_minor(v) for cur, v in sorted(by_currency.items())},
        "total_quantity": sum(r["quantity"] for r in rows),
    }


@router.get("/sales-summary", response_model=Dict)
async def sales_summary_report(
    start: Optional[date] = None,
    end: Optional[date] = None,
    location_id: Optional[UUID] = None,
    top: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Completed sales only; refunded and cancelled sales are excluded."""
    lo, hi = _date_bounds(start, end)
    filters = [SaleModel.status == "COMPLETED"]
    if lo:
        filters.append(SaleModel.completed_at >= lo)
    if hi:
        filters.append(SaleModel.completed_at < hi)
    if location_id:
        filters.append(SaleModel.location_id == location_id)

    revenue_expr = SaleItemModel.quantity * func.coalesce(SaleItemModel.unit_price_minor, 0)

    sale_count = (await db.execute(select(func.count(SaleModel.id)).where(*filters))).scalar_one()
    totals = (await db.execute(
        select(
            func.coalesce(func.sum(SaleItemModel.quantity), 0),
            func.coalesce(func.sum(revenue_expr), 0),
        )
        .join(SaleModel, SaleModel.id == SaleItemModel.sale_id)
        .where(*filters)
    )).one()
    by_currency = (await db.execute(
        select(SaleModel.currency, func.coalesce(func.sum(revenue_expr), 0))
        .select_from(SaleItemModel)
        .join(SaleModel, SaleModel.id == SaleItemModel.sale_id)
        .where(*filters)
        .group_by(SaleModel.currency)
    )).all()

    top_res = await db.execute(
        select(
            ProductModel.id,
            ProductModel.sku,
            ProductModel.name,
            func.sum(SaleItemModel.quantity).label("units"),
            func.sum(revenue_expr).label("revenue_minor"),
        )
        .join(SaleModel, SaleModel.id == SaleItemModel.sale_id)
        .join(ProductModel, ProductModel.id == SaleItemModel.product_id)
        .where(*filters)
        .group_by(ProductModel.id, ProductModel.sku, ProductModel.name)
        .order_by(func.sum(revenue_expr).desc(), ProductModel.sku.asc())
        .limit(top)
    )

    return {
        "start": start,
        "end": end,
        "sale_count": int(sale_count or 0),
        "units_sold": int(totals[0] or 0),
        "revenue": price_from_minor(int(totals[1] or 0)),
        "revenue_by_currency": {cur: price_from_minor(int(v or 0)) for cur, v in sorted(by_currency)},
        "top_products": [
            {
                "product_id": r.id,
                "sku": r.sku,
                "name": r.name,
                "units": int(r.units or 0),
                "revenue": price_from_minor(int(r.revenue_minor or 0)),
            }
            for r in top_res.all()
        ],
    }


@router.get("/movements-summary", response_model=Dict)
async def movements_summary_report(
    start: Optional[date] = None,
    end: Optional[date] = None,
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    lo, hi = _date_bounds(start, end)
    stmt = select(
        InventoryMovementModel.movement_type,
        func.count(InventoryMovementModel.id),
        func.coalesce(func.sum(InventoryMovementModel.change), 0),
    ).group_by(InventoryMovementModel.movement_type)
    if lo:
        stmt = stmt.where(InventoryMovementModel.created_at >= lo)
    if hi:
        stmt = stmt.where(InventoryMovementModel.created_at < hi)
    if location_id:
        stmt = stmt.where(InventoryMovementModel.location_id == location_id)

    by_type = {
        mt: {"count": int(cnt), "net_change": int(net)}
        for mt, cnt, net in (await db.execute(stmt)).all()
    }
    return {
        "start": start,
        "end": end,
        "by_type": by_type,
        "net_change": sum(v["net_change"] for v in by_type.values()),
    }


# --- exports -----------------------------------------------------------------

@router.get("/stock.csv")
async def export_stock_csv(
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await load_stock_rows(db, location_id=location_id)
    return csv_response(
        "stock.csv",
        ["location_code", "sku", "name", "quantity", "reorder_level", "is_low"],
        ([r.location_code, r.product_sku, r.product_name, r.quantity, r.reorder_level, "yes" if r.is_low else "no"] for r in rows),
    )


@router.get("/stock.pdf")
async def export_stock_pdf(
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await load_stock_rows(db, location_id=location_id)
    return pdf_table_response(
        "stock.pdf",
        "Stock levels",
        ["Location", "SKU", "Product", "Quantity", "Reorder level", "Low"],
        [[r.location_code, r.product_sku, r.product_name, r.quantity, r.reorder_level, "yes" if r.is_low else ""] for r in rows],
    )


@router.get("/movements.csv")
async def export_movements_csv(
    start: Optional[date] = None,
    end: Optional[date] = None,
    location_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    lo, hi = _date_bounds(start, end)
    stmt = (
        select(InventoryMovementModel, ProductModel.sku, LocationModel.code)
        .join(ProductModel, ProductModel.id == InventoryMovementModel.product_id)
        .join(LocationModel, LocationModel.id == InventoryMovementModel.location_id)
    )
    if lo:
        stmt = stmt.where(InventoryMovementModel.created_at >= lo)
    if hi:
        stmt = stmt.where(InventoryMovementModel.created_at < hi)
    if location_id:
        stmt = stmt.where(InventoryMovementModel.location_id == location_id)
    res = await db.execute(stmt.order_by(InventoryMovementModel.created_at.asc()))

    return csv_response(
        "movements.csv",
        ["created_at", "location_code", "sku", "movement_type", "change", "reason", "source_type", "source_id"],
        (
            [m.created_at.isoformat(), code, sku, m.movement_type, m.change, m.reason, m.source_type, m.source_id]
            for m, sku, code in res.all()
        ),
    )


@router.get("/sales.csv")
async def export_sales_csv(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    lo, hi = _date_bounds(start, end)
    stmt = (
        select(SaleModel, SaleItemModel, ProductModel.sku)
        .join(SaleItemModel, SaleItemModel.sale_id == SaleModel.id)
        .join(ProductModel, ProductModel.id == SaleItemModel.product_id)
        .where(SaleModel.status.in_(["COMPLETED", "REFUNDED"]))
    )
    if lo:
        stmt = stmt.where(SaleModel.completed_at >= lo)
    if hi:
        stmt = stmt.where(SaleModel.completed_at < hi)
    res = await db.execute(stmt.order_by(SaleModel.completed_at.asc(), ProductModel.sku.asc()))

    return csv_response(
        "sales.csv",
        ["reference", "completed_at", "status", "sku", "quantity", "unit_price", "line_total", "currency"],
        (
            [
                s.reference,
                s.completed_at.isoformat() if s.completed_at else None,
                s.status,
                sku,
                it.quantity,
                price_from_minor(it.unit_price_minor),
                price_from_minor(int(it.quantity) * int(it.unit_price_minor or 0)),
                s.currency,
            ]
            for s, it, sku in res.all()
        ),
    )
