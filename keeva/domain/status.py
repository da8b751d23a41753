"""Order status vocabulary and the role permission table."""

# --- Order states ---
STATUS_PENDING = "Pending"
STATUS_CONFIRMED = "Confirmed"
STATUS_PROCESSING = "Processing"
STATUS_SHIPPED = "Shipped"
STATUS_DELIVERED = "Delivered"
STATUS_CANCELLED = "Cancelled"

STATUS_VALUES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
)

TERMINAL_STATUSES = {STATUS_CANCELLED}
# Customers may not cancel once the order has left the store
DISPATCHED_STATUSES = {STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED}

# --- Payment ---
PAYMENT_COD = "cod"
PAYMENT_ONLINE = "online"
PAYMENT_PENDING = "Pending"
PAYMENT_DONE = "Done"

_PAYMENT_ALIASES = {
    "cod": PAYMENT_COD,
    "cash": PAYMENT_COD,
    "cash_on_delivery": PAYMENT_COD,
    "online": PAYMENT_ONLINE,
    "razorpay": PAYMENT_ONLINE,
    "prepaid": PAYMENT_ONLINE,
    "card": PAYMENT_ONLINE,
}

# --- Delivery ---
DELIVERY_TYPES = ("standard", "express", "scheduled")
DELIVERY_STATUS_FOR_ORDER = {
    STATUS_SHIPPED: "Out for delivery",
    STATUS_DELIVERED: "Delivered",
    STATUS_CANCELLED: "Cancelled",
}

# --- Roles ---
ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"
ROLE_PARTNER = "partner"
ROLE_RIDER = "rider"

PRIVILEGED_ROLES = {ROLE_ADMIN, ROLE_PARTNER, ROLE_RIDER}

ROLE_ALLOWED_STATUSES = {
    ROLE_ADMIN: {STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED},
    ROLE_PARTNER: {STATUS_CONFIRMED, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED},
    ROLE_RIDER: {STATUS_SHIPPED, STATUS_DELIVERED},
    ROLE_CUSTOMER: {STATUS_CANCELLED},
}


def is_privileged(role: str) -> bool:
    return role in PRIVILEGED_ROLES


def can_role_set_status(role: str, status: str) -> bool:
    return status in ROLE_ALLOWED_STATUSES.get(role, set())


def normalize_payment_method(value) -> str | None:
    """Map client spellings (cash, razorpay, card...) to cod/online. None if unknown."""
    normalized = str(value or PAYMENT_COD).lower().strip()
    return _PAYMENT_ALIASES.get(normalized)
