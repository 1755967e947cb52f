from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator, model_validator

from ._common import currency_code, non_negative_price, strip_nullable, strip_optional, strip_required


BarcodeSymbology = Literal["EAN13", "UPCA", "CODE128", "QR"]

# Digit count per fixed-length numeric symbology
_NUMERIC_LENGTHS = {"EAN13": 13, "UPCA": 12}


def gtin_check_digit_ok(code: str) -> bool:
    """GS1 mod-10 check for EAN-13 / UPC-A (rightmost digit is the check digit)."""
    if not code.isdigit() or len(code) < 2:
        return False
    body = [int(c) for c in code[:-1]]
    total = 0
    # weights 3,1,3,1... starting from the digit next to the check digit
    for i, d in enumerate(reversed(body)):
        total += d * (3 if i % 2 == 0 else 1)
    return (10 - total % 10) % 10 == int(code[-1])


class BarcodeCreate(BaseModel):
    code: str
    symbology: BarcodeSymbology = "CODE128"

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        return strip_required(v)

    @model_validator(mode="after")
    def _check_digits(self):
        expected_len = _NUMERIC_LENGTHS.get(self.symbology)
        if expected_len is not None:
            if not self.code.isdigit() or len(self.code) != expected_len:
                raise ValueError(f"{self.symbology} barcodes must be {expected_len} digits")
            if not gtin_check_digit_ok(self.code):
                raise ValueError(f"invalid {self.symbology} check digit")
        return self


class BarcodeRead(BaseModel):
    id: UUID
    code: str
    symbology: str


class ProductCreate(BaseModel):
    sku: str
    name: str
    description: Optional[str] = None
    category_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    unit: str = "pcs"
    price: Optional[float] = None
    cost_price: Optional[float] = None
    currency: Optional[str] = None
    default_reorder_level: Optional[int] = None
    barcodes: List[BarcodeCreate] = []

    @field_validator("sku")
    @classmethod
    def _sku(cls, v: str) -> str:
        return strip_required(v).upper()

    @field_validator("name", "unit")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        return strip_required(v)

    @field_validator("description")
    @classmethod
    def _description(cls, v: Optional[str]) -> Optional[str]:
        return strip_nullable(v)

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        return currency_code(v)

    @field_validator("price", "cost_price")
    @classmethod
    def _prices(cls, v: Optional[float]) -> Optional[float]:
        return non_negative_price(v)

    @field_validator("default_reorder_level")
    @classmethod
    def _reorder(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("default_reorder_level must be >= 0")
        return v

    @model_validator(mode="after")
    def _unique_barcodes(self):
        codes = [b.code for b in self.barcodes]
        if len(codes) != len(set(codes)):
            raise ValueError("duplicate barcodes in request")
        return self


class ProductUpdate(BaseModel):
    sku: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    unit: Optional[str] = None
    price: Optional[float] = None
    cost_price: Optional[float] = None
    currency: Optional[str] = None
    default_reorder_level: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("sku")
    @classmethod
    def _sku(cls, v: Optional[str]) -> Optional[str]:
        v = strip_optional(v)
        return v.upper() if v else v

    @field_validator("name", "unit")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return strip_optional(v)

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        return currency_code(v)

    @field_validator("price", "cost_price")
    @classmethod
    def _prices(cls, v: Optional[float]) -> Optional[float]:
        return non_negative_price(v)

    @field_validator("default_reorder_level")
    @classmethod
    def _reorder(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("default_reorder_level must be >= 0")
        return v
