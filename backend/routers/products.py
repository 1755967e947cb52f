import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from typing import Dict, List, Optional
from uuid import UUID

from core import audit
from core.auth import can_see_costs, current_active_user, current_manager
from core.config import settings
from core.converters import is_low_stock, minor_from_price, product_to_dict
from db.database import (
    get_async_session,
    Barcode as BarcodeModel,
    Category as CategoryModel,
    Location as LocationModel,
    Product as ProductModel,
    Stock as StockModel,
    Supplier as SupplierModel,
    User,
)
from schemas.products import BarcodeCreate, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_product_or_404(db: AsyncSession, product_id: UUID, *, with_barcodes: bool = False) -> ProductModel:
    stmt = select(ProductModel).where(ProductModel.id == product_id)
    if with_barcodes:
        stmt = stmt.options(selectinload(ProductModel.barcodes)).execution_options(populate_existing=True)
    res = await db.execute(stmt)
    p = res.scalar_one_or_none()
    if not p:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return p


async def _ensure_sku_free(db: AsyncSession, sku: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(ProductModel.id).where(func.upper(ProductModel.sku) == sku.upper())
    if exclude_id:
        stmt = stmt.where(ProductModel.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"SKU {sku} already exists")


async def _ensure_barcodes_free(db: AsyncSession, codes: List[str]) -> None:
    if not codes:
        return
    res = await db.execute(select(BarcodeModel.code).where(BarcodeModel.code.in_(codes)))
    taken = sorted(res.scalars().all())
    if taken:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Barcode already assigned: {', '.join(taken)}")


async def _check_refs(db: AsyncSession, category_id: Optional[UUID], supplier_id: Optional[UUID]) -> None:
    if category_id is not None and not await db.get(CategoryModel, category_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category_id")
    if supplier_id is not None:
        supplier = await db.get(SupplierModel, supplier_id)
        if not supplier:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown supplier_id")
        if not supplier.is_active:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier is inactive")


async def _stock_by_location(db: AsyncSession, product: ProductModel) -> List[Dict]:
    res = await db.execute(
        select(StockModel.location_id, StockModel.quantity, StockModel.reorder_level, LocationModel.code)
        .join(LocationModel, LocationModel.id == StockModel.location_id)
        .where(StockModel.product_id == product.id)
        .order_by(LocationModel.code.asc())
    )
    out = []
    for row in res.all():
        level = row.reorder_level if row.reorder_level is not None else product.default_reorder_level
        out.append({
            "location_id": row.location_id,
            "location_code": row.code,
            "quantity": int(row.quantity or 0),
            "reorder_level": level,
            "is_low": is_low_stock(int(row.quantity or 0), level),
        })
    return out


@router.get("/", response_model=List[Dict])
async def list_products(
    q: Optional[str] = None,
    category_id: Optional[UUID] = None,
    supplier_id: Optional[UUID] = None,
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """
    List products with optional filters.

    - q matches name or SKU (case-insensitive substring).
    - cost prices are only returned to managers and admins.
    """
    stmt = select(ProductModel).options(selectinload(ProductModel.barcodes))
    if not include_inactive:
        stmt = stmt.where(ProductModel.is_active == True)  # noqa: E712
    if category_id:
        stmt = stmt.where(ProductModel.category_id == category_id)
    if supplier_id:
        stmt = stmt.where(ProductModel.supplier_id == supplier_id)
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(ProductModel.name).like(qq), func.lower(ProductModel.sku).like(qq)))

    res = await db.execute(stmt.order_by(func.lower(ProductModel.name).asc()).limit(limit).offset(offset))
    show_costs = can_see_costs(user)
    return [product_to_dict(p, show_costs=show_costs, barcodes=p.barcodes) for p in res.scalars().all()]


@router.get("/barcode/{code}", response_model=Dict)
async def lookup_by_barcode(
    code: str,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Resolve a scanned barcode value to its product."""
    res = await db.execute(select(BarcodeModel).where(BarcodeModel.code == code.strip()))
    bc = res.scalar_one_or_none()
    if not bc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Barcode not found")
    p = await get_product_or_404(db, bc.product_id, with_barcodes=True)
    out = product_to_dict(p, show_costs=can_see_costs(user), barcodes=p.barcodes)
    out["stock"] = await _stock_by_location(db, p)
    return out


@router.get("/{product_id}", response_model=Dict)
async def get_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    p = await get_product_or_404(db, product_id, with_barcodes=True)
    out = product_to_dict(p, show_costs=can_see_costs(user), barcodes=p.barcodes)
    out["stock"] = await _stock_by_location(db, p)
    return out


@router.post("/", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    await _ensure_sku_free(db, payload.sku)
    await _check_refs(db, payload.category_id, payload.supplier_id)
    await _ensure_barcodes_free(db, [b.code for b in payload.barcodes])

    p = ProductModel(
        sku=payload.sku,
        name=payload.name,
        description=payload.description,
        category_id=payload.category_id,
        supplier_id=payload.supplier_id,
        unit=payload.unit,
        sale_price_minor=minor_from_price(payload.price),
        cost_price_minor=minor_from_price(payload.cost_price),
        currency=payload.currency or settings.default_currency,
        default_reorder_level=payload.default_reorder_level,
        is_active=True,
    )
    p.barcodes = [BarcodeModel(code=b.code, symbology=b.symbology) for b in payload.barcodes]
    db.add(p)
    await db.flush()
    audit.record(db, user_id=user.id, action="CREATE", entity_type="product", entity_id=p.id, details={"sku": p.sku})
    await db.commit()
    logger.info(f"Product {p.sku} created ({p.id})")

    p = await get_product_or_404(db, p.id, with_barcodes=True)
    return product_to_dict(p, show_costs=True, barcodes=p.barcodes)


@router.patch("/{product_id}", response_model=Dict)
async def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    p = await get_product_or_404(db, product_id)
    data = payload.model_dump(exclude_unset=True)

    if data.get("sku") is not None:
        await _ensure_sku_free(db, data["sku"], exclude_id=p.id)
        p.sku = data["sku"]
    if "category_id" in data or "supplier_id" in data:
        await _check_refs(db, data.get("category_id"), data.get("supplier_id"))
    if "category_id" in data:
        p.category_id = data["category_id"]
    if "supplier_id" in data:
        p.supplier_id = data["supplier_id"]
    if data.get("name") is not None:
        p.name = data["name"]
    if "description" in data:
        p.description = data["description"]
    if data.get("unit") is not None:
        p.unit = data["unit"]
    if "price" in data:
        p.sale_price_minor = minor_from_price(data["price"])
    if "cost_price" in data:
        p.cost_price_minor = minor_from_price(data["cost_price"])
    if data.get("currency") is not None:
        p.currency = data["currency"]
    if "default_reorder_level" in data:
        p.default_reorder_level = data["default_reorder_level"]
    if data.get("is_active") is not None:
        p.is_active = bool(data["is_active"])

    audit.record(db, user_id=user.id, action="UPDATE", entity_type="product", entity_id=p.id, details=data)
    await db.commit()

    p = await get_product_or_404(db, p.id, with_barcodes=True)
    return product_to_dict(p, show_costs=True, barcodes=p.barcodes)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def soft_delete_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Products are never hard-deleted: movements and orders reference them."""
    p = await get_product_or_404(db, product_id)
    p.is_active = False
    audit.record(db, user_id=user.id, action="DELETE", entity_type="product", entity_id=p.id, details={"sku": p.sku})
    await db.commit()


@router.post("/{product_id}/barcodes", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def add_barcode(
    product_id: UUID,
    payload: BarcodeCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    p = await get_product_or_404(db, product_id)
    await _ensure_barcodes_free(db, [payload.code])

    bc = BarcodeModel(product_id=p.id, code=payload.code, symbology=payload.symbology)
    db.add(bc)
    await db.flush()
    audit.record(
        db,
        user_id=user.id,
        action="CREATE",
        entity_type="barcode",
        entity_id=bc.id,
        details={"product_id": p.id, "code": bc.code},
    )
    await db.commit()
    return {"id": bc.id, "product_id": p.id, "code": bc.code, "symbology": bc.symbology}


@router.delete("/{product_id}/barcodes/{barcode_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_barcode(
    product_id: UUID,
    barcode_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    res = await db.execute(
        select(BarcodeModel).where(BarcodeModel.id == barcode_id, BarcodeModel.product_id == product_id)
    )
    bc = res.scalar_one_or_none()
    if not bc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Barcode not found")

    await db.delete(bc)
    audit.record(
        db,
        user_id=user.id,
        action="DELETE",
        entity_type="barcode",
        entity_id=barcode_id,
        details={"product_id": product_id, "code": bc.code},
    )
    await db.commit()
