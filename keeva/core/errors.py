"""Error taxonomy for the order and payment service.

Every error carries the HTTP status it maps to; the request boundary turns
them into ``{"ok": false, "message": ...}`` responses.
"""


class KeevaError(Exception):
    """Base exception for all order/payment errors."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(KeevaError):
    """Malformed, missing or out-of-range input."""

    status_code = 400


class NotFoundError(KeevaError):
    """Unknown order, user or address."""

    status_code = 404


class AuthenticationError(KeevaError):
    """Missing, expired or unusable bearer token."""

    status_code = 401


class AuthorizationError(KeevaError):
    """Authenticated, but not permitted to do this."""

    status_code = 403


class SignatureMismatchError(KeevaError):
    """Payment callback signature did not match the expected HMAC."""

    status_code = 400

    def __init__(self, gateway_order_id: str):
        self.gateway_order_id = gateway_order_id
        super().__init__("Invalid payment signature")


class PaymentGatewayError(KeevaError):
    """The hosted payment gateway refused, failed or timed out."""

    status_code = 502


class InvalidTransitionError(KeevaError):
    """Order status change not allowed from the current state."""

    status_code = 400

    def __init__(self, current: str, requested: str, reason: str | None = None):
        self.current = current
        self.requested = requested
        msg = reason or f"Cannot change order status from {current} to {requested}"
        super().__init__(msg)


class ConcurrentUpdateError(KeevaError):
    """Optimistic concurrency retries were exhausted."""

    status_code = 409

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is being updated concurrently, try again")


class OrderIdCollision(KeevaError):
    """A freshly minted order id already exists in storage."""

    status_code = 409

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order id collision: {order_id}")
