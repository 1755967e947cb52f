from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from ._common import strip_nullable, strip_required


MovementType = Literal["RECEIPT", "SALE", "RETURN", "TRANSFER_IN", "TRANSFER_OUT", "ADJUSTMENT"]


class StockLevelUpdate(BaseModel):
    # Quantity is not settable here; use an adjustment.
    reorder_level: Optional[int] = None

    @field_validator("reorder_level")
    @classmethod
    def _non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("reorder_level must be >= 0")
        return v


class InventoryAdjustmentCreate(BaseModel):
    product_id: UUID
    location_id: UUID
    change: int
    reason: str

    @field_validator("change")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if int(v) == 0:
            raise ValueError("change must not be 0")
        return int(v)

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        return strip_required(v)


class InventoryTransferCreate(BaseModel):
    product_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    quantity: int
    reason: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _positive(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)

    @field_validator("reason")
    @classmethod
    def _reason(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @model_validator(mode="after")
    def _different_locations(self):
        if self.from_location_id == self.to_location_id:
            raise ValueError("from_location_id and to_location_id must differ")
        return self


class InventoryMovementOut(BaseModel):
    id: UUID
    product_id: UUID
    location_id: UUID
    change: int
    movement_type: MovementType
    reason: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[UUID] = None
    transfer_id: Optional[UUID] = None
    created_at: datetime
    created_by_user_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class StockOut(BaseModel):
    product_id: UUID
    product_sku: str
    product_name: str
    location_id: UUID
    location_code: str
    quantity: int
    reorder_level: Optional[int] = None
    is_low: bool = False
