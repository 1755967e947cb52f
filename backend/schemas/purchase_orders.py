from datetime import date, datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from ._common import non_negative_price, strip_nullable


PurchaseOrderStatus = Literal["DRAFT", "ORDERED", "PARTIALLY_RECEIVED", "RECEIVED", "CANCELLED"]


class PurchaseOrderItemIn(BaseModel):
    product_id: UUID
    quantity: int
    unit_cost: Optional[float] = None

    @field_validator("quantity")
    @classmethod
    def _positive(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)

    @field_validator("unit_cost")
    @classmethod
    def _cost(cls, v: Optional[float]) -> Optional[float]:
        return non_negative_price(v)


def _no_duplicate_products(items: List[PurchaseOrderItemIn]) -> None:
    ids = [it.product_id for it in items]
    if len(ids) != len(set(ids)):
        raise ValueError("each product may appear only once per order")


class PurchaseOrderCreate(BaseModel):
    supplier_id: UUID
    location_id: UUID
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[PurchaseOrderItemIn]

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @model_validator(mode="after")
    def _items(self):
        if not self.items:
            raise ValueError("an order needs at least one item")
        _no_duplicate_products(self.items)
        return self


class PurchaseOrderUpdate(BaseModel):
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    items: Optional[List[PurchaseOrderItemIn]] = None

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @model_validator(mode="after")
    def _items(self):
        if self.items is not None:
            if not self.items:
                raise ValueError("an order needs at least one item")
            _no_duplicate_products(self.items)
        return self


class PurchaseOrderStatusUpdate(BaseModel):
    status: PurchaseOrderStatus


class ReceiveLine(BaseModel):
    item_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def _positive(cls, v: int) -> int:
        if int(v) <= 0:
            raise ValueError("quantity must be > 0")
        return int(v)


class ReceiveRequest(BaseModel):
    # None -> receive everything outstanding
    lines: Optional[List[ReceiveLine]] = None


class PurchaseOrderItemRead(BaseModel):
    id: UUID
    product_id: UUID
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity_ordered: int
    quantity_received: int
    unit_cost: Optional[float] = None
    line_total: Optional[float] = None


class PurchaseOrderRead(BaseModel):
    id: UUID
    reference: str
    supplier_id: UUID
    supplier_name: Optional[str] = None
    location_id: UUID
    location_code: Optional[str] = None
    status: PurchaseOrderStatus
    expected_date: Optional[date] = None
    notes: Optional[str] = None
    currency: Optional[str] = None
    ordered_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: datetime
    total: Optional[float] = None
    items: List[PurchaseOrderItemRead]
