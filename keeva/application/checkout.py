import logging
from typing import Callable, Optional, Tuple

from keeva.application.lifecycle import safe_emit
from keeva.application.order_builder import (
    OrderBuilder,
    build_address_snapshot,
    build_payment,
    generate_order_id,
    select_user_address,
    utcnow,
)
from keeva.application.pricing import CouponBook, compute_pricing, sanitize_items
from keeva.core.config import settings
from keeva.core.errors import (
    AuthorizationError,
    NotFoundError,
    OrderIdCollision,
    SignatureMismatchError,
    ValidationError,
)
from keeva.domain.models import Order
from keeva.domain.schemas import HumanOrderId, InternalId, OrderCreateBody
from keeva.domain.status import PAYMENT_COD, PAYMENT_DONE, PAYMENT_ONLINE, normalize_payment_method
from keeva.infrastructure.notification_service import ORDERS_NEW, ORDERS_STATUS
from keeva.infrastructure.repositories.user_repository import SqlAlchemyUserRepository
from keeva.interfaces.INotifier import INotifier
from keeva.interfaces.IOrderRepository import IOrderRepository
from keeva.interfaces.IPaymentGateway import GatewayOrder, IPaymentGateway

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("keeva.security")


class CheckoutService:
    """Turns cart snapshots into orders and settles online payments.

    Validation and pricing always finish before anything is written, and
    the online path only persists once the gateway has issued its order.
    """

    def __init__(self, order_repo: IOrderRepository, user_repo: SqlAlchemyUserRepository,
                 gateway: IPaymentGateway, notifier: INotifier,
                 builder: Optional[OrderBuilder] = None,
                 coupon_book: Optional[CouponBook] = None,
                 id_attempts: int = settings.ORDER_ID_ATTEMPTS,
                 max_delivery_fee: float = settings.MAX_DELIVERY_FEE,
                 max_tax_rate: float = settings.MAX_TAX_RATE):
        self.order_repo = order_repo
        self.user_repo = user_repo
        self.gateway = gateway
        self.notifier = notifier
        self.builder = builder or OrderBuilder()
        self.coupon_book = coupon_book or CouponBook(settings.COUPONS)
        self.id_attempts = id_attempts
        self.max_delivery_fee = max_delivery_fee
        self.max_tax_rate = max_tax_rate

    # ---------------------------------------------------------
    # CREATE
    # ---------------------------------------------------------
    def create_cod_order(self, user_id: str, body: OrderCreateBody) -> Order:
        draft = self._prepare(user_id, body)

        method = normalize_payment_method((body.payment or {}).get("method"))
        if method is None:
            raise ValidationError("Invalid payment method")
        if method == PAYMENT_ONLINE:
            raise ValidationError("Online payments must be initiated via /orders/payment/create endpoint")

        order = self._persist(lambda order_id: self.builder.build(
            order_id=order_id, payment=build_payment(PAYMENT_COD), **draft))

        logger.info(f"✅ COD order created: {order.order_id}")
        safe_emit(self.notifier, ORDERS_NEW, order.to_dict(), order.user_id)
        return order

    def create_online_order(self, user_id: str, body: OrderCreateBody) -> Tuple[Order, GatewayOrder]:
        draft = self._prepare(user_id, body)

        # One gateway order per checkout; a late id collision reuses it
        order_id = self._unused_order_id()
        gateway_order = self.gateway.create_intent(
            draft["pricing"].grand_total,
            receipt=order_id,
            notes={"userId": user_id, "paymentMethod": PAYMENT_ONLINE},
        )

        def make_order(candidate_id: str) -> Order:
            if candidate_id != gateway_order.receipt:
                logger.warning(f"⚠️ Gateway order {gateway_order.id} keeps receipt {gateway_order.receipt}, "
                               f"order saved as {candidate_id}")
            return self.builder.build(
                order_id=candidate_id,
                payment=build_payment(PAYMENT_ONLINE, gateway_order.to_dict()),
                **draft,
            )

        order = self._persist(make_order, first_id=order_id)

        logger.info(f"✅ Online order created: {order.order_id} (gateway {gateway_order.id}, {gateway_order.amount})")
        safe_emit(self.notifier, ORDERS_NEW, order.to_dict(), order.user_id)
        return order, gateway_order

    def _prepare(self, user_id: str, body: OrderCreateBody) -> dict:
        """Everything that can reject a cart, in order, with no side effects."""
        items = sanitize_items(body.items)

        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError("User not found")

        # Coupon rules are applied on the recomputed subtotal, not the client's
        subtotal = sum(item.price * item.quantity for item in items)
        discount = self.coupon_book.discount_for(body.coupon_code, subtotal)
        pricing = compute_pricing(
            items,
            body.pricing,
            coupon_discount=discount,
            max_delivery_fee=self.max_delivery_fee,
            max_tax_rate=self.max_tax_rate,
        )

        saved = select_user_address(user, body.address_id, body.address)
        # Reject a bad delivery slot before the gateway is ever called
        self.builder.delivery_for(body.delivery)
        return {
            "user": user,
            "items": items,
            "pricing": pricing,
            "address": build_address_snapshot(user, saved),
            "delivery": body.delivery,
            "coupon_code": body.coupon_code,
        }

    def _unused_order_id(self) -> str:
        for _ in range(self.id_attempts):
            candidate = generate_order_id()
            if self.order_repo.resolve(HumanOrderId(candidate)) is None:
                return candidate
        raise OrderIdCollision(candidate)

    def _persist(self, make_order: Callable[[str], Order], first_id: Optional[str] = None) -> Order:
        last_error = None
        for attempt in range(1, self.id_attempts + 1):
            order_id = first_id if attempt == 1 and first_id else generate_order_id()
            order = make_order(order_id)
            try:
                return self.order_repo.add(order)
            except OrderIdCollision as e:
                logger.warning(f"⚠️ {e} ({attempt}/{self.id_attempts}), minting a new id")
                last_error = e
        raise last_error

    # ---------------------------------------------------------
    # VERIFY
    # ---------------------------------------------------------
    def verify_payment(self, user_id: str, gateway_order_id: Optional[str],
                       gateway_payment_id: Optional[str], signature: Optional[str]) -> Tuple[Order, bool]:
        """Settle an online payment callback.

        Returns the order and whether it had already been settled. Repeated
        callbacks never touch transactionId or the status history again.
        """
        if not gateway_order_id or not gateway_payment_id or not signature:
            raise ValidationError("Payment verification data is incomplete")

        if not self.gateway.verify_signature(gateway_order_id, gateway_payment_id, signature):
            security_logger.warning(
                f"🚨 Payment signature mismatch: gateway order {gateway_order_id}, "
                f"payment {gateway_payment_id}, user {user_id}"
            )
            raise SignatureMismatchError(gateway_order_id)

        order = self.order_repo.get_by_gateway_order_id(gateway_order_id)
        if order is None:
            raise NotFoundError("Order not found for this payment")
        if order.user_id != user_id:
            raise AuthorizationError("You are not authorized to verify this payment")

        outcome = {"already": False}

        def settle(fresh: Order) -> bool:
            payment = fresh.payment or {}
            outcome["already"] = payment.get("status") == PAYMENT_DONE
            if outcome["already"]:
                return False
            fresh.payment = {**payment, "status": PAYMENT_DONE, "transactionId": gateway_payment_id}
            fresh.updated_at = utcnow()
            return True

        order = self.order_repo.mutate(InternalId(order.id), settle)
        if outcome["already"]:
            logger.info(f"Payment already verified: {order.order_id}")
        else:
            logger.info(f"✅ Payment verified: {order.order_id} txn {gateway_payment_id}")

        safe_emit(self.notifier, ORDERS_STATUS, {
            "orderId": order.order_id,
            "status": order.status,
            "paymentStatus": order.payment["status"],
            "transactionId": order.payment.get("transactionId"),
        }, order.user_id)
        return order, outcome["already"]
