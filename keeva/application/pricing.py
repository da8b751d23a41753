"""Cart sanitizing and server-side pricing.

Client carts are advisory. Line totals are recomputed from the sanitized
items, delivery fee and tax are clamped into configured bounds, and coupon
discounts are derived from the coupon code alone.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from keeva.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_ID = "VEND_DEFAULT"


@dataclass(frozen=True)
class LineItem:
    product_id: str
    name: str
    price: float
    quantity: int
    vendor_id: str = DEFAULT_VENDOR_ID

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "vendorId": self.vendor_id,
        }


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: float
    delivery_fee: float
    tax: float
    coupon_discount: float
    grand_total: float

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "deliveryFee": self.delivery_fee,
            "tax": self.tax,
            "couponDiscount": self.coupon_discount,
            "grandTotal": self.grand_total,
        }


def _money(value: float) -> float:
    return round(value, 2)


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_quantity(value: Any) -> Optional[int]:
    number = _to_number(value)
    if number is None or not number.is_integer() or number <= 0:
        return None
    return int(number)


def sanitize_items(raw_items: Any) -> List[LineItem]:
    """Validate a client cart snapshot.

    Invalid lines are dropped; an empty result is an error. Duplicate product
    ids are kept as separate lines.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items required")

    sanitized = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        product_id = raw.get("productId") or raw.get("_id") or raw.get("id")
        name = str(raw.get("name") or "").strip()
        price = _to_number(raw.get("price"))
        quantity = _to_quantity(raw.get("quantity", raw.get("qty")))

        if not product_id or not name or price is None or price <= 0 or quantity is None:
            logger.debug(f"Dropping invalid cart line: {raw}")
            continue

        sanitized.append(LineItem(
            product_id=str(product_id),
            name=name,
            price=price,
            quantity=quantity,
            vendor_id=str(raw.get("vendorId") or DEFAULT_VENDOR_ID),
        ))

    if not sanitized:
        raise ValidationError("no valid items")
    return sanitized


class CouponBook:
    """Server-side coupon rules keyed by upper-cased code.

    Each rule is ``{"type": "flat"|"percent", "value": n}`` with optional
    ``min_subtotal`` and ``max_discount``.
    """

    def __init__(self, rules: Optional[Dict[str, dict]] = None):
        self.rules = {code.upper(): rule for code, rule in (rules or {}).items()}

    def discount_for(self, code: Optional[str], subtotal: float) -> float:
        if not code:
            return 0.0
        rule = self.rules.get(code.strip().upper())
        if rule is None:
            raise ValidationError("Invalid coupon code")

        min_subtotal = float(rule.get("min_subtotal", 0))
        if subtotal < min_subtotal:
            raise ValidationError(f"Coupon {code} needs a minimum order of {min_subtotal:g}")

        value = float(rule.get("value", 0))
        if rule.get("type") == "percent":
            discount = subtotal * value / 100
        else:
            discount = value

        max_discount = rule.get("max_discount")
        if max_discount is not None:
            discount = min(discount, float(max_discount))
        return _money(min(max(discount, 0.0), subtotal))


def _clamp(value: Any, upper: Optional[float] = None) -> float:
    number = _to_number(value)
    if number is None or number < 0:
        return 0.0
    if upper is not None:
        number = min(number, upper)
    return number


def compute_pricing(
    items: List[LineItem],
    hints: Optional[dict] = None,
    coupon_discount: float = 0.0,
    max_delivery_fee: Optional[float] = None,
    max_tax_rate: Optional[float] = None,
) -> PricingBreakdown:
    """Authoritative pricing for sanitized items.

    ``hints`` is the client's pricing block; only deliveryFee and tax are read
    from it. Any client couponDiscount is ignored in favour of ``coupon_discount``.
    """
    hints = hints or {}
    subtotal = _money(sum(item.price * item.quantity for item in items))

    delivery_fee = _money(_clamp(hints.get("deliveryFee"), max_delivery_fee))
    tax_cap = subtotal * max_tax_rate if max_tax_rate is not None else None
    tax = _money(_clamp(hints.get("tax"), tax_cap))
    discount = _money(_clamp(coupon_discount, subtotal))

    hinted_discount = _to_number(hints.get("couponDiscount"))
    if hinted_discount and hinted_discount != discount:
        logger.info(f"Ignoring client coupon discount {hinted_discount}, server computed {discount}")

    grand_total = _money(subtotal + delivery_fee + tax - discount)
    if not math.isfinite(grand_total) or grand_total <= 0:
        raise ValidationError("Invalid payable amount")

    return PricingBreakdown(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax=tax,
        coupon_discount=discount,
        grand_total=grand_total,
    )
