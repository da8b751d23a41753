import itertools
import logging
import secrets
import time
from datetime import date, datetime, timezone
from typing import List, Optional

import pytz

from keeva.application.pricing import LineItem, PricingBreakdown
from keeva.core.config import settings
from keeva.core.errors import NotFoundError, ValidationError
from keeva.domain.models import Order, SavedAddress, User
from keeva.domain.status import (
    DELIVERY_TYPES,
    PAYMENT_PENDING,
    STATUS_PENDING,
)

logger = logging.getLogger(__name__)

# Process-wide sequence; next() on itertools.count is atomic under the GIL
_sequence = itertools.count()


def generate_order_id() -> str:
    """ORD + epoch millis + 5 digit sequence + 4 hex chars.

    The sequence keeps ids unique inside one process, the random tail keeps
    separate workers apart. Storage still enforces uniqueness.
    """
    millis = int(time.time() * 1000)
    seq = next(_sequence) % 100000
    return f"ORD{millis}{seq:05d}{secrets.token_hex(2).upper()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------
# ADDRESS SNAPSHOT
# ---------------------------------------------------------
def select_user_address(user: User, address_id: Optional[str] = None,
                        address: Optional[dict] = None) -> SavedAddress:
    """Pick the saved address the order ships to.

    The client only names an address book entry; the contents always come
    from the server side copy.
    """
    address = address or {}
    reference = address_id or address.get("addressId") or address.get("_id") or address.get("id")
    saved = list(user.addresses or [])

    if reference:
        for entry in saved:
            if entry.id == str(reference):
                return entry
        raise NotFoundError("Address not found")

    for entry in saved:
        if entry.is_default:
            return entry
    if saved:
        return saved[0]
    raise ValidationError("Delivery address required")


def build_address_snapshot(user: User, saved: SavedAddress) -> dict:
    return {
        "addressId": saved.id,
        "house": saved.house,
        "street": saved.street,
        "city": saved.city,
        "state": saved.state,
        "pincode": saved.pincode,
        "contactName": saved.contact_name or user.name,
        "contactPhone": saved.contact_phone or user.phone,
    }


# ---------------------------------------------------------
# DELIVERY / PAYMENT SUB-RECORDS
# ---------------------------------------------------------
def store_today(tz_name: str) -> date:
    return datetime.now(pytz.timezone(tz_name)).date()


def build_delivery(raw: Optional[dict], today: date) -> dict:
    raw = raw or {}
    delivery_type = str(raw.get("type") or "standard").lower().strip()
    if delivery_type not in DELIVERY_TYPES:
        raise ValidationError(f"Invalid delivery type. Must be one of: {', '.join(DELIVERY_TYPES)}")

    expected = raw.get("expectedDate")
    if expected:
        try:
            expected_date = date.fromisoformat(str(expected)[:10])
        except ValueError:
            raise ValidationError("Invalid expected delivery date")
        if expected_date < today:
            raise ValidationError("Expected delivery date is in the past")
    else:
        expected_date = today

    return {
        "type": delivery_type,
        "expectedDate": expected_date.isoformat(),
        "expectedTime": raw.get("expectedTime") or raw.get("slot"),
        "status": STATUS_PENDING,
    }


def build_payment(method: str, gateway_order: Optional[dict] = None) -> dict:
    payment = {
        "method": method,
        "status": PAYMENT_PENDING,
        "transactionId": None,
    }
    if gateway_order:
        payment.update({
            "gatewayOrderId": gateway_order["id"],
            "amount": gateway_order["amount"],
            "currency": gateway_order["currency"],
            "receipt": gateway_order["receipt"],
        })
    return payment


# ---------------------------------------------------------
# BUILDER
# ---------------------------------------------------------
class OrderBuilder:
    """Assembles unsaved orders. Persisting is the caller's job."""

    def __init__(self, tz_name: str = settings.TIMEZONE):
        self.tz_name = tz_name

    def delivery_for(self, intent: Optional[dict]) -> dict:
        return build_delivery(intent, store_today(self.tz_name))

    def build(
        self,
        user: User,
        items: List[LineItem],
        pricing: PricingBreakdown,
        address: Optional[dict],
        delivery: Optional[dict],
        payment: dict,
        coupon_code: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Order:
        if not address:
            raise ValidationError("Delivery address required")

        now = utcnow()
        order = Order(
            order_id=order_id or generate_order_id(),
            user_id=user.id,
            items=[item.to_dict() for item in items],
            pricing=pricing.to_dict(),
            address=dict(address),
            delivery=self.delivery_for(delivery),
            payment=dict(payment),
            gateway_order_id=payment.get("gatewayOrderId"),
            coupon_code=coupon_code.strip().upper() if coupon_code else None,
            status=STATUS_PENDING,
            status_history=[{
                "status": STATUS_PENDING,
                "updatedBy": {"user": user.id, "role": user.role},
                "updatedAt": now.isoformat(),
            }],
            created_at=now,
            updated_at=now,
        )
        logger.debug(f"Built order {order.order_id} for user {user.id}")
        return order
