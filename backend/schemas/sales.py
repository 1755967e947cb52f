from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from ._common import non_negative_price, strip_nullable


SaleStatus = Literal["DRAFT", "COMPLETED", "CANCELLED", "REFUNDED"]


class SaleItemIn(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Optional[float] = None

    @field_validator("quantity")
    @classmethod
    def _positive(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)

    @field_validator("unit_price")
    @classmethod
    def _price(cls, v: Optional[float]) -> Optional[float]:
        return non_negative_price(v)


def _no_duplicate_products(items: List[SaleItemIn]) -> None:
    ids = [it.product_id for it in items]
    if len(ids) != len(set(ids)):
        raise ValueError("each product may appear only once per sale")


class SaleCreate(BaseModel):
    location_id: UUID
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    items: List[SaleItemIn]

    @field_validator("customer_name", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @model_validator(mode="after")
    def _items(self):
        if not self.items:
            raise ValueError("a sale needs at least one item")
        _no_duplicate_products(self.items)
        return self


class SaleUpdate(BaseModel):
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[SaleItemIn]] = None

    @field_validator("customer_name", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @model_validator(mode="after")
    def _items(self):
        if self.items is not None:
            if not self.items:
                raise ValueError("a sale needs at least one item")
            _no_duplicate_products(self.items)
        return self


class SaleItemRead(BaseModel):
    id: UUID
    product_id: UUID
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    unit_price: Optional[float] = None
    line_total: float


class SaleRead(BaseModel):
    id: UUID
    reference: str
    location_id: UUID
    location_code: Optional[str] = None
    customer_name: Optional[str] = None
    status: SaleStatus
    currency: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    total: float
    items: List[SaleItemRead]
