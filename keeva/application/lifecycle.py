import logging
from typing import List, Optional

from keeva.application.order_builder import utcnow
from keeva.core.errors import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from keeva.domain.models import Order
from keeva.domain.schemas import Actor, OrderReference
from keeva.domain.status import (
    DELIVERY_STATUS_FOR_ORDER,
    DISPATCHED_STATUSES,
    STATUS_CANCELLED,
    STATUS_PENDING,
    STATUS_VALUES,
    TERMINAL_STATUSES,
    can_role_set_status,
    is_privileged,
)
from keeva.infrastructure.notification_service import ORDERS_CANCELLED, ORDERS_STATUS
from keeva.interfaces.INotifier import INotifier
from keeva.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)


def safe_emit(notifier: INotifier, event: str, payload, target_user_id: Optional[str]) -> None:
    """Broadcasts never decide whether an order change succeeded."""
    try:
        notifier.emit(event, payload, target_user_id)
    except Exception as e:
        logger.warning(f"⚠️ Broadcast of {event} failed: {e}")


def check_transition(order: Order, new_status: str, actor: Actor) -> None:
    owner = order.user_id == actor.user_id
    privileged = is_privileged(actor.role)

    if not privileged and not owner:
        raise AuthorizationError("You are not authorized to change this order")

    if order.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(order.status, new_status, f"Order is {order.status} and can no longer change")

    # Pending is in no role table, reject it as a transition first
    if new_status == STATUS_PENDING:
        raise InvalidTransitionError(order.status, new_status, "Pending is only set when an order is created")

    if not can_role_set_status(actor.role, new_status):
        raise AuthorizationError("Not allowed to set this status")

    if new_status == order.status:
        raise InvalidTransitionError(order.status, new_status, f"Order is already {order.status}")

    if new_status == STATUS_CANCELLED and not privileged and order.status in DISPATCHED_STATUSES:
        raise InvalidTransitionError(order.status, new_status, f"Cannot cancel order with status: {order.status}")


def apply_status_change(order: Order, new_status: str, actor: Actor, reason: Optional[str] = None) -> None:
    now = utcnow()
    order.status = new_status
    # New list objects: JSON columns only notice reassignment
    order.status_history = [*(order.status_history or []), {
        "status": new_status,
        "updatedBy": actor.as_history(),
        "updatedAt": now.isoformat(),
    }]
    delivery_status = DELIVERY_STATUS_FOR_ORDER.get(new_status)
    if delivery_status:
        order.delivery = {**(order.delivery or {}), "status": delivery_status}
    if new_status == STATUS_CANCELLED and reason:
        order.cancellation_reason = reason
    order.updated_at = now


class OrderLifecycleManager:
    """Owns order status changes: who may make them and what happens after."""

    def __init__(self, order_repo: IOrderRepository, notifier: INotifier):
        self.order_repo = order_repo
        self.notifier = notifier

    def resolve_order(self, reference: OrderReference) -> Order:
        order = self.order_repo.resolve(reference)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def get_order(self, reference: OrderReference, actor: Actor) -> Order:
        order = self.resolve_order(reference)
        if order.user_id != actor.user_id and not is_privileged(actor.role):
            raise AuthorizationError("You are not authorized to view this order")
        return order

    def list_orders(self, actor: Actor) -> List[Order]:
        user_filter = None if is_privileged(actor.role) else actor.user_id
        return self.order_repo.list_orders(user_id=user_filter)

    def set_status(self, reference: OrderReference, new_status: Optional[str], actor: Actor,
                   reason: Optional[str] = None) -> Order:
        if not new_status or new_status not in STATUS_VALUES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(STATUS_VALUES)}")

        def change(order: Order) -> bool:
            check_transition(order, new_status, actor)
            apply_status_change(order, new_status, actor, reason)
            return True

        order = self.order_repo.mutate(reference, change)
        logger.info(f"Order {order.order_id} -> {order.status} by {actor.role}:{actor.user_id}")
        self._broadcast(order)
        return order

    def cancel(self, reference: OrderReference, actor: Actor, reason: Optional[str] = None) -> Order:
        """Customer cancellation: owner only, before dispatch."""

        def change(order: Order) -> bool:
            if order.user_id != actor.user_id:
                raise AuthorizationError("You are not authorized to cancel this order")
            if order.status in DISPATCHED_STATUSES:
                raise InvalidTransitionError(order.status, STATUS_CANCELLED,
                                             f"Cannot cancel order with status: {order.status}")
            apply_status_change(order, STATUS_CANCELLED, actor, reason or "User requested cancellation")
            return True

        order = self.order_repo.mutate(reference, change)
        logger.info(f"Order {order.order_id} cancelled by owner {actor.user_id}")
        self._broadcast(order)
        return order

    def _broadcast(self, order: Order) -> None:
        if order.status == STATUS_CANCELLED:
            payload = {
                "orderId": order.order_id,
                "status": order.status,
                "reason": order.cancellation_reason,
            }
            safe_emit(self.notifier, ORDERS_CANCELLED, payload, order.user_id)
        else:
            payload = {
                "orderId": order.order_id,
                "status": order.status,
                "paymentStatus": (order.payment or {}).get("status"),
                "updatedAt": order.updated_at.isoformat() if order.updated_at else None,
            }
            safe_emit(self.notifier, ORDERS_STATUS, payload, order.user_id)
