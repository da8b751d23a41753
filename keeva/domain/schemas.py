import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# ---------------------------------------------------------
# IDENTITIES
# ---------------------------------------------------------
@dataclass(frozen=True)
class Actor:
    """Who is acting on an order: the authenticated user and their role."""

    user_id: str
    role: str

    def as_history(self) -> dict:
        return {"user": self.user_id, "role": self.role}


@dataclass(frozen=True)
class InternalId:
    """Storage-native order key (UUID)."""

    value: str


@dataclass(frozen=True)
class HumanOrderId:
    """Human readable order number, e.g. ORD1718000000000000042A3F1."""

    value: str


OrderReference = Union[InternalId, HumanOrderId]


def parse_order_reference(raw: str) -> OrderReference:
    """Tag a path parameter once, at the HTTP boundary."""
    raw = (raw or "").strip()
    try:
        return InternalId(str(uuid.UUID(raw)))
    except ValueError:
        return HumanOrderId(raw)


# ---------------------------------------------------------
# REQUEST BODIES
# ---------------------------------------------------------
# Items and pricing stay loosely typed: the sanitizer owns their validation
# so that bad carts come back as {ok: false} instead of a schema dump.
class OrderCreateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: Any = None
    pricing: Optional[dict] = None
    payment: Optional[dict] = None
    delivery: Optional[dict] = None
    address_id: Optional[str] = Field(default=None, alias="addressId")
    address: Optional[dict] = None
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")


class StatusUpdateBody(BaseModel):
    status: Optional[str] = None


class CancelBody(BaseModel):
    reason: Optional[str] = None


class PaymentVerifyBody(BaseModel):
    gateway_order_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id")
    )
    gateway_payment_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("gatewayPaymentId", "razorpay_payment_id")
    )
    signature: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("signature", "razorpay_signature")
    )
