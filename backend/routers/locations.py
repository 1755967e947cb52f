import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from core import audit
from core.auth import current_active_user, current_manager
from db.database import get_async_session, Location as LocationModel, User
from schemas.locations import LocationCreate, LocationRead, LocationUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_location_or_404(db: AsyncSession, location_id: UUID, *, active_only: bool = False) -> LocationModel:
    res = await db.execute(select(LocationModel).where(LocationModel.id == location_id))
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
    if active_only and not m.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Location {m.code} is inactive")
    return m


async def _ensure_code_free(db: AsyncSession, code: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(LocationModel.id).where(func.upper(LocationModel.code) == code.upper())
    if exclude_id:
        stmt = stmt.where(LocationModel.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Location code already exists")


@router.get("/", response_model=List[LocationRead])
async def list_locations(
    q: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(LocationModel)
    if not include_inactive:
        stmt = stmt.where(LocationModel.is_active == True)  # noqa: E712
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(LocationModel.code).like(qq), func.lower(LocationModel.name).like(qq)))
    res = await db.execute(stmt.order_by(LocationModel.code.asc()).limit(limit).offset(offset))
    return [LocationRead(**m.to_schema) for m in res.scalars().all()]


@router.get("/{location_id}", response_model=LocationRead)
async def get_location(
    location_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    m = await get_location_or_404(db, location_id)
    return LocationRead(**m.to_schema)


@router.post("/", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
async def create_location(
    payload: LocationCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    await _ensure_code_free(db, payload.code)
    m = LocationModel(code=payload.code, name=payload.name, address=payload.address, is_active=True)
    db.add(m)
    await db.flush()
    audit.record(db, user_id=user.id, action="CREATE", entity_type="location", entity_id=m.id, details={"code": m.code})
    await db.commit()
    await db.refresh(m)
    logger.info(f"Location {m.code} created")
    return LocationRead(**m.to_schema)


@router.patch("/{location_id}", response_model=LocationRead)
async def update_location(
    location_id: UUID,
    payload: LocationUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    m = await get_location_or_404(db, location_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("code") is not None:
        await _ensure_code_free(db, data["code"], exclude_id=m.id)
        m.code = data["code"]
    if data.get("name") is not None:
        m.name = data["name"]
    if "address" in data:
        m.address = data["address"]
    if data.get("is_active") is not None:
        m.is_active = bool(data["is_active"])

    audit.record(db, user_id=user.id, action="UPDATE", entity_type="location", entity_id=m.id, details=data)
    await db.commit()
    await db.refresh(m)
    return LocationRead(**m.to_schema)


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(
    location_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    """Soft delete; stock rows and the movement history stay."""
    m = await get_location_or_404(db, location_id)
    m.is_active = False
    audit.record(db, user_id=user.id, action="DELETE", entity_type="location", entity_id=m.id)
    await db.commit()
