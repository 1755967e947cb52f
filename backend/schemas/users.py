# Pydantic schemas for user-related requests/responses
# fastapi-users provides the base Read/Create/Update schemas; these extend them.

from typing import Literal, Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, field_validator

UserRole = Literal["ADMIN", "MANAGER", "STAFF"]


class UserRead(schemas.BaseUser[UUID]):
    full_name: Optional[str] = None
    role: str = "STAFF"
    totp_enabled: bool = False


class UserCreate(schemas.BaseUserCreate):
    full_name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    full_name: Optional[str] = None


class UserRoleUpdate(BaseModel):
    role: UserRole

    @field_validator("role", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class TotpSetupRead(BaseModel):
    secret: str
    provisioning_uri: str


class TotpCode(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def _digits(cls, v: str) -> str:
        v = (v or "").strip().replace(" ", "")
        if not v.isdigit() or len(v) != 6:
            raise ValueError("code must be 6 digits")
        return v
