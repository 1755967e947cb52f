from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_admin
from db.database import get_async_session, AuditLog as AuditLogModel, User
from schemas.audit import AuditLogRead

router = APIRouter()


@router.get("/", response_model=List[AuditLogRead])
async def list_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_admin),
):
    stmt = select(AuditLogModel)
    if entity_type:
        stmt = stmt.where(AuditLogModel.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLogModel.entity_id == entity_id)
    if user_id:
        stmt = stmt.where(AuditLogModel.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLogModel.action == action.upper())
    res = await db.execute(
        stmt.order_by(AuditLogModel.created_at.desc(), AuditLogModel.id.desc()).limit(limit).offset(offset)
    )
    return [AuditLogRead.model_validate(a) for a in res.scalars().all()]
