from typing import Optional


def strip_required(v: Optional[str]) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("field is required")
    return v


def strip_optional(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if not v:
        raise ValueError("cannot be empty")
    return v


def strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def currency_code(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().upper()
    if not v:
        return None
    if len(v) != 3 or not v.isalpha():
        raise ValueError("currency must be a 3-letter code (e.g. USD)")
    return v


def non_negative_price(v: Optional[float]) -> Optional[float]:
    if v is None:
        return None
    if v < 0:
        raise ValueError("price must be >= 0")
    return v
