from typing import Dict, Iterable, Optional

from db.database import Product, Stock


def minor_from_price(price: Optional[float]) -> Optional[int]:
    if price is None:
        return None
    try:
        return int(round(float(price) * 100))
    except (TypeError, ValueError):
        return None


def price_from_minor(minor: Optional[int]) -> Optional[float]:
    if minor is None:
        return None
    return float(minor) / 100.0


def effective_reorder_level(stock: Optional[Stock], product: Product) -> Optional[int]:
    """Stock-level threshold, falling back to the product default."""
    if stock is not None and stock.reorder_level is not None:
        return int(stock.reorder_level)
    if product.default_reorder_level is not None:
        return int(product.default_reorder_level)
    return None


def is_low_stock(quantity: int, reorder_level: Optional[int]) -> bool:
    if reorder_level is None:
        return False
    return int(quantity) <= int(reorder_level)


def product_to_dict(p: Product, *, show_costs: bool = True, barcodes: Optional[Iterable] = None) -> Dict:
    """Serialize a product; `barcodes` must be preloaded when passed."""
    out = {
        "id": p.id,
        "sku": p.sku,
        "name": p.name,
        "description": p.description,
        "category_id": p.category_id,
        "supplier_id": p.supplier_id,
        "unit": p.unit,
        "currency": p.currency,
        "price": price_from_minor(p.sale_price_minor),
        "sale_price_minor": p.sale_price_minor,
        "cost_price": price_from_minor(p.cost_price_minor) if show_costs else None,
        "cost_price_minor": p.cost_price_minor if show_costs else None,
        "default_reorder_level": p.default_reorder_level,
        "is_active": bool(p.is_active),
    }
    if barcodes is not None:
        out["barcodes"] = [
            {"id": b.id, "code": b.code, "symbology": b.symbology}
            for b in barcodes
        ]
    return out
