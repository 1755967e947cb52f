import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from core import audit
from core.auth import current_active_user, current_manager
from db.database import get_async_session, Supplier as SupplierModel, User
from schemas.suppliers import SupplierRead, SupplierCreate, SupplierUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_supplier_or_404(db: AsyncSession, supplier_id: UUID) -> SupplierModel:
    res = await db.execute(select(SupplierModel).where(SupplierModel.id == supplier_id))
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return m


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(SupplierModel.id).where(func.lower(SupplierModel.name) == name.lower())
    if exclude_id:
        stmt = stmt.where(SupplierModel.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Supplier already exists")


@router.get("/", response_model=List[SupplierRead])
async def list_suppliers(
    q: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(SupplierModel)
    if not include_inactive:
        stmt = stmt.where(SupplierModel.is_active == True)  # noqa: E712
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(SupplierModel.name).like(qq), func.lower(SupplierModel.contact_name).like(qq)))
    res = await db.execute(stmt.order_by(func.lower(SupplierModel.name).asc()).limit(limit).offset(offset))
    items = res.scalars().all()
    return [SupplierRead(**s.to_schema) for s in items]


@router.get("/{supplier_id}", response_model=SupplierRead)
async def get_supplier(
    supplier_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    m = await _get_supplier_or_404(db, supplier_id)
    return SupplierRead(**m.to_schema)


@router.post("/", response_model=SupplierRead, status_code=status.HTTP_201_CREATED)
async def create_supplier(
    payload: SupplierCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    await _ensure_name_free(db, payload.name)

    m = SupplierModel(
        name=payload.name,
        contact_name=payload.contact_name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
        notes=payload.notes,
        is_active=True,
    )
    db.add(m)
    await db.flush()
    audit.record(db, user_id=user.id, action="CREATE", entity_type="supplier", entity_id=m.id, details={"name": m.name})
    await db.commit()
    await db.refresh(m)
    logger.info(f"Supplier {m.id} created ({m.name})")
    return SupplierRead(**m.to_schema)


@router.patch("/{supplier_id}", response_model=SupplierRead)
async def update_supplier(
    supplier_id: UUID,
    payload: SupplierUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    m = await _get_supplier_or_404(db, supplier_id)

    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is not None:
        await _ensure_name_free(db, data["name"], exclude_id=m.id)
        m.name = data["name"]
    for field in ("contact_name", "email", "phone", "address", "notes"):
        if field in data:
            setattr(m, field, data[field])
    if "is_active" in data and data["is_active"] is not None:
        m.is_active = bool(data["is_active"])

    audit.record(db, user_id=user.id, action="UPDATE", entity_type="supplier", entity_id=m.id, details=data)
    await db.commit()
    await db.refresh(m)
    return SupplierRead(**m.to_schema)


@router.delete("/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_supplier(
    supplier_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Soft delete: purchase orders and products keep pointing at the supplier."""
    m = await _get_supplier_or_404(db, supplier_id)
    m.is_active = False
    audit.record(db, user_id=user.id, action="DELETE", entity_type="supplier", entity_id=m.id)
    await db.commit()
