from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator

from ._common import strip_optional, strip_required


class LocationRead(BaseModel):
    id: UUID
    code: str
    name: str
    address: Optional[str] = None
    is_active: bool = True


class LocationCreate(BaseModel):
    code: str
    name: str
    address: Optional[str] = None

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        return strip_required(v).upper()

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return strip_required(v)


class LocationUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def _code(cls, v: Optional[str]) -> Optional[str]:
        v = strip_optional(v)
        return v.upper() if v else v

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        return strip_optional(v)
