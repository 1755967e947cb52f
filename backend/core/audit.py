from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from db.database import AuditLog


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def record(
    db: AsyncSession,
    *,
    user_id: Optional[UUID],
    action: str,
    entity_type: str,
    entity_id: Any = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """Add an audit row to the caller's transaction (no flush, no commit)."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=_jsonable(details) if details else None,
    )
    db.add(entry)
    return entry
