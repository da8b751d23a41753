import hashlib
import hmac
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError
import requests

from keeva.core.config import settings
from keeva.core.errors import PaymentGatewayError
from keeva.interfaces.IPaymentGateway import GatewayOrder, IPaymentGateway

logger = logging.getLogger(__name__)

_GATEWAY_ERRORS = (
    BadRequestError,
    GatewayError,
    ServerError,
    requests.RequestException,
)


def to_minor_units(amount: float) -> int:
    """Rupees to paise, rounding to the nearest paisa (halves up)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    body = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


class RazorpayGateway(IPaymentGateway):
    """Hosted checkout bridge. Only the online payment path touches this."""

    def __init__(self, key_id: Optional[str] = settings.RAZORPAY_KEY_ID,
                 key_secret: Optional[str] = settings.RAZORPAY_KEY_SECRET,
                 currency: str = settings.PAYMENT_CURRENCY,
                 timeout: float = settings.GATEWAY_TIMEOUT_SECONDS,
                 client=None):
        self._key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self.timeout = timeout
        # client is injectable for tests; otherwise build the SDK client lazily
        self.client = client
        if self.client is None and key_id and key_secret:
            self.client = razorpay.Client(auth=(key_id, key_secret))
            logger.info("✅ RazorpayGateway: client initialized")
        elif self.client is None:
            logger.warning("⚠️ RazorpayGateway: credentials missing, online payments disabled")

    @property
    def key_id(self) -> Optional[str]:
        return self._key_id

    def create_intent(self, grand_total: float, receipt: str, notes: Optional[dict] = None) -> GatewayOrder:
        amount = to_minor_units(grand_total)
        if amount <= 0:
            raise PaymentGatewayError("Invalid payable amount for online payment", status_code=400)
        if self.client is None:
            raise PaymentGatewayError("Online payments are not configured")

        data = {
            "amount": amount,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            response = self.client.order.create(data=data, timeout=self.timeout)
        except requests.Timeout:
            logger.error(f"❌ Gateway timed out creating order for {receipt}")
            raise PaymentGatewayError("Payment gateway timed out, please retry")
        except _GATEWAY_ERRORS as e:
            logger.error(f"❌ Gateway error creating order for {receipt}: {e}")
            raise PaymentGatewayError(f"Payment gateway error: {e}")

        if not response or not response.get("id"):
            raise PaymentGatewayError("Payment gateway returned no order id")

        return GatewayOrder(
            id=response["id"],
            amount=int(response.get("amount", amount)),
            currency=response.get("currency", self.currency),
            receipt=response.get("receipt", receipt),
        )

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        """Constant-time check of the callback HMAC. Never raises on mismatch."""
        if not self.key_secret or not signature:
            return False
        expected = compute_signature(self.key_secret, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected.encode(), str(signature).encode())
