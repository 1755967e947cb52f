from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from core import audit
from core.auth import current_active_user, current_manager
from db.database import get_async_session, Category as CategoryModel, Product as ProductModel, User
from schemas.categories import CategoryCreate, CategoryRead, CategoryUpdate

router = APIRouter()


async def _get_category_or_404(db: AsyncSession, category_id: UUID) -> CategoryModel:
    res = await db.execute(select(CategoryModel).where(CategoryModel.id == category_id))
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return m


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(CategoryModel.id).where(func.lower(CategoryModel.name) == name.lower())
    if exclude_id:
        stmt = stmt.where(CategoryModel.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists")


async def _check_parent(db: AsyncSession, category_id: Optional[UUID], parent_id: Optional[UUID]) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A category cannot be its own parent")

    # Walk up from the new parent; reaching category_id would close a cycle
    seen = set()
    current = parent_id
    while current is not None:
        if current in seen:
            break
        seen.add(current)
        parent = await _get_category_or_404(db, current)
        if category_id is not None and parent.parent_id == category_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category parent would create a cycle")
        current = parent.parent_id


@router.get("/", response_model=List[CategoryRead])
async def list_categories(
    q: Optional[str] = None,
    parent_id: Optional[UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(CategoryModel)
    if parent_id:
        stmt = stmt.where(CategoryModel.parent_id == parent_id)
    if q:
        stmt = stmt.where(func.lower(CategoryModel.name).like(f"%{q.strip().lower()}%"))
    res = await db.execute(stmt.order_by(func.lower(CategoryModel.name).asc()).limit(limit).offset(offset))
    return [CategoryRead(**c.to_schema) for c in res.scalars().all()]


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return CategoryRead(**(await _get_category_or_404(db, category_id)).to_schema)


@router.post("/", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    await _ensure_name_free(db, payload.name)
    await _check_parent(db, None, payload.parent_id)

    m = CategoryModel(name=payload.name, description=payload.description, parent_id=payload.parent_id)
    db.add(m)
    await db.flush()
    audit.record(db, user_id=user.id, action="CREATE", entity_type="category", entity_id=m.id, details={"name": m.name})
    await db.commit()
    await db.refresh(m)
    return CategoryRead(**m.to_schema)


@router.patch("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: UUID,
    payload: CategoryUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    m = await _get_category_or_404(db, category_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("name") is not None:
        await _ensure_name_free(db, data["name"], exclude_id=m.id)
        m.name = data["name"]
    if "description" in data:
        m.description = data["description"]
    if "parent_id" in data:
        await _check_parent(db, m.id, data["parent_id"])
        m.parent_id = data["parent_id"]

    audit.record(db, user_id=user.id, action="UPDATE", entity_type="category", entity_id=m.id, details=data)
    await db.commit()
    await db.refresh(m)
    return CategoryRead(**m.to_schema)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_manager),
):
    m = await _get_category_or_404(db, category_id)

    products = (await db.execute(
        select(func.count()).select_from(ProductModel).where(ProductModel.category_id == m.id)
    )).scalar_one()
    children = (await db.execute(
        select(func.count()).select_from(CategoryModel).where(CategoryModel.parent_id == m.id)
    )).scalar_one()
    if products or children:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Category is still in use (products={int(products)}, subcategories={int(children)})",
        )

    await db.delete(m)
    audit.record(db, user_id=user.id, action="DELETE", entity_type="category", entity_id=category_id, details={"name": m.name})
    await db.commit()
