import logging
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from httpx_oauth.clients.google import GoogleOAuth2

from core import audit, mailer
from core.config import settings
from db.database import User
from db.users import get_user_db

logger = logging.getLogger(__name__)


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = settings.secret_key
    verification_token_secret = settings.secret_key

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info(f"User {user.id} has registered ({user.email})")
        audit.record(
            self.user_db.session,
            user_id=user.id,
            action="CREATE",
            entity_type="user",
            entity_id=user.id,
            details={"email": user.email},
        )
        await self.user_db.session.commit()

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        logger.info(f"User {user.id} logged in")

    async def oauth_callback(self, *args, **kwargs) -> User:
        """External sign-in cannot check a one-time code, so it is closed to TOTP-protected accounts."""
        user = await super().oauth_callback(*args, **kwargs)
        if user.totp_enabled:
            logger.info(f"OAuth login refused for user {user.id}: TOTP is enabled")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="LOGIN_OTP_REQUIRED")
        return user

    async def on_after_forgot_password(self, user: User, token: str, request: Optional[Request] = None):
        logger.info(f"User {user.id} has forgot their password")
        mailer.send_password_reset_email(user.email, token)

    async def on_after_request_verify(self, user: User, token: str, request: Optional[Request] = None):
        logger.info(f"Verification requested for user {user.id}")
        mailer.send_verification_email(user.email, token)


async def get_user_manager(user_db=Depends(get_user_db)):
    yield UserManager(user_db)


bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")


def get_jwt_strategy() -> JWTStrategy:
    return JWTStrategy(secret=settings.secret_key, lifetime_seconds=settings.jwt_lifetime_seconds)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

current_active_user = fastapi_users.current_user(active=True)
current_active_superuser = fastapi_users.current_user(active=True, superuser=True)


def require_roles(*roles: str):
    """Dependency factory: the active user must hold one of `roles` (superusers always pass)."""
    allowed = {r.upper() for r in roles}

    async def _checker(user: User = Depends(current_active_user)) -> User:
        if user.effective_role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
        return user

    return _checker


current_manager = require_roles("ADMIN", "MANAGER")
current_admin = require_roles("ADMIN")


def can_see_costs(user: User) -> bool:
    return user.effective_role in {"ADMIN", "MANAGER"}


google_oauth_client = (
    GoogleOAuth2(settings.google_oauth_client_id, settings.google_oauth_client_secret)
    if settings.google_oauth_enabled
    else None
)
