import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from fastapi_users.authentication import Strategy
from sqlalchemy.ext.asyncio import AsyncSession

from core import audit, totp
from core.auth import auth_backend, current_active_user, current_admin, get_user_manager, UserManager
from db.database import get_async_session, User
from schemas.users import TotpCode, TotpSetupRead, UserRead, UserRoleUpdate

logger = logging.getLogger(__name__)

router = APIRouter()
users_router = APIRouter()


@router.post("/jwt/login")
async def login(
    request: Request,
    credentials: OAuth2PasswordRequestForm = Depends(),
    otp: Optional[str] = Form(None),
    user_manager: UserManager = Depends(get_user_manager),
    strategy: Strategy = Depends(auth_backend.get_strategy),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Password login; users with TOTP enabled must also send `otp`.

    Error details follow fastapi-users' LOGIN_* codes.
    """
    user = await user_manager.authenticate(credentials)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="LOGIN_BAD_CREDENTIALS")

    if user.totp_enabled:
        if not otp:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="LOGIN_OTP_REQUIRED")
        if not totp.verify_code(user.totp_secret, otp):
            logger.info(f"Rejected one-time code for user {user.id}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="LOGIN_BAD_OTP")

    response = await auth_backend.login(strategy, user)
    audit.record(db, user_id=user.id, action="LOGIN", entity_type="user", entity_id=user.id)
    await db.commit()
    await user_manager.on_after_login(user, request, response)
    return response


@router.post("/totp/setup", response_model=TotpSetupRead)
async def totp_setup(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    if user.totp_enabled:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Two-factor authentication is already enabled")

    secret = totp.new_secret()
    user.totp_secret = secret
    await db.commit()
    return TotpSetupRead(secret=secret, provisioning_uri=totp.provisioning_uri(secret, user.email))


@router.post("/totp/enable", response_model=UserRead)
async def totp_enable(
    payload: TotpCode,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    if user.totp_enabled:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Two-factor authentication is already enabled")
    if not user.totp_secret:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Call /auth/totp/setup first")
    if not totp.verify_code(user.totp_secret, payload.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    user.totp_enabled = True
    audit.record(db, user_id=user.id, action="TOTP", entity_type="user", entity_id=user.id, details={"enabled": True})
    await db.commit()
    logger.info(f"TOTP enabled for user {user.id}")
    return UserRead.model_validate(user.to_schema)


@router.post("/totp/disable", response_model=UserRead)
async def totp_disable(
    payload: TotpCode,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    if not user.totp_enabled:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Two-factor authentication is not enabled")
    if not totp.verify_code(user.totp_secret, payload.code):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid code")

    user.totp_enabled = False
    user.totp_secret = None
    audit.record(db, user_id=user.id, action="TOTP", entity_type="user", entity_id=user.id, details={"enabled": False})
    await db.commit()
    logger.info(f"TOTP disabled for user {user.id}")
    return UserRead.model_validate(user.to_schema)


@users_router.patch("/{user_id}/role", response_model=UserRead)
async def update_user_role(
    user_id: UUID,
    payload: UserRoleUpdate,
    admin: User = Depends(current_admin),
    db: AsyncSession = Depends(get_async_session),
):
    target = await db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    old_role = target.role
    target.role = payload.role
    audit.record(
        db,
        user_id=admin.id,
        action="UPDATE",
        entity_type="user",
        entity_id=target.id,
        details={"role": {"from": old_role, "to": payload.role}},
    )
    await db.commit()
    logger.info(f"User {target.id} role changed {old_role} -> {payload.role} by {admin.id}")
    return UserRead.model_validate(target.to_schema)
