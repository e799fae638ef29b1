"""
Line items for order emails, rebuilt from orders.customization_data.

Two shapes exist in stored orders:
- multi-item: {"items": [{productId, productName, phoneModel, designName, quantity, customizationOptions}, ...]}
- legacy single-item: {"customText", "font", "placement"} applied to the flat order columns
Anything unreadable falls back to one item built from the flat columns.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models import Order, ProductImage

logger = logging.getLogger(__name__)


def pick_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _quantity(value: Any) -> int:
    return max(1, _to_int(value) or 1)


def _customization(opts: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(opts, dict):
        return None
    fields = {k: opts.get(k) for k in ("customText", "font", "placement")}
    if not any(fields.values()):
        return None
    return fields


def fallback_item(order: Order) -> Dict[str, Any]:
    """Single item from the order's flat product columns."""
    return {
        "product_id": order.product_id,
        "product_name": order.product_name or "Item",
        "phone_model": order.phone_model,
        "design_name": order.design_name,
        "quantity": _quantity(order.quantity),
        "customization": None,
    }


def parse_items_from_customization(customization_data: Optional[str], fallback: Dict[str, Any]) -> List[Dict[str, Any]]:
    if not customization_data:
        return [fallback]
    try:
        parsed = json.loads(customization_data)
    except (TypeError, ValueError):
        logger.debug("customization_data is not valid JSON; using flat order columns")
        return [fallback]
    if not isinstance(parsed, dict):
        return [fallback]

    items = parsed.get("items")
    if isinstance(items, list) and items:
        out = []
        for it in items:
            if not isinstance(it, dict):
                continue
            out.append({
                "product_id": _to_int(it["productId"] if it.get("productId") is not None else it.get("product_id")),
                "product_name": it.get("productName") or it.get("product_name") or "Item",
                "phone_model": it.get("phoneModel") or it.get("phone_model") or None,
                "design_name": it.get("designName") or it.get("design_name") or None,
                "quantity": _quantity(it.get("quantity")),
                "customization": _customization(it.get("customizationOptions")),
            })
        if out:
            return out
        return [fallback]

    legacy = _customization(parsed)
    if legacy:
        return [dict(fallback, customization=legacy)]
    return [fallback]


def items_for_order(order: Order) -> List[Dict[str, Any]]:
    return parse_items_from_customization(order.customization_data, fallback_item(order))


def make_absolute_url(raw_url: str, base_url: str) -> str:
    base = base_url.rstrip("/")
    if raw_url.startswith("http://") or raw_url.startswith("https://"):
        return raw_url
    if raw_url.startswith("/"):
        return f"{base}{raw_url}"
    return f"{base}/{raw_url}"


def fetch_primary_images(db: Session, product_ids: Iterable[Any], base_url: str) -> Dict[int, str]:
    """Best-effort {product_id: absolute image url}; primary image first, then sort order."""
    unique = sorted({pid for pid in (_to_int(p) for p in product_ids) if pid is not None})
    images: Dict[int, str] = {}
    if not unique:
        return images
    try:
        rows = (
            db.query(ProductImage)
            .filter(ProductImage.product_id.in_(unique))
            .order_by(ProductImage.is_primary.desc(), ProductImage.sort_order.asc(), ProductImage.id.asc())
            .all()
        )
    except Exception as e:
        logger.warning("Product image lookup failed: %s", e)
        db.rollback()
        return images
    for row in rows:
        raw = pick_string(row.image_url)
        if raw and row.product_id not in images:
            images[row.product_id] = make_absolute_url(raw, base_url)
    return images
