"""Pytest fixtures for keeva tests."""

import os

# Settings are read at import time; keep the module-level app off the real database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import pytest

from keeva.application.checkout import CheckoutService
from keeva.application.lifecycle import OrderLifecycleManager
from keeva.application.pricing import CouponBook
from keeva.domain.models import SavedAddress, User
from keeva.domain.schemas import OrderCreateBody
from keeva.infrastructure.database import Base, make_engine, make_session_factory
from keeva.infrastructure.payment_gateway import RazorpayGateway
from keeva.infrastructure.repositories.order_repository import SqlAlchemyOrderRepository
from keeva.infrastructure.repositories.user_repository import SqlAlchemyUserRepository
from keeva.interfaces.INotifier import INotifier

GATEWAY_KEY_ID = "rzp_test_key"
GATEWAY_SECRET = "rzp_test_secret"


class RecordingNotifier(INotifier):
    """Keeps every emitted event instead of pushing it to sockets."""

    def __init__(self):
        self.events = []
        self.snapshots = []

    def emit(self, event, payload, target_user_id=None):
        self.events.append((event, payload, target_user_id))

    def send_snapshot(self, connection_id, user_id, role, orders):
        self.snapshots.append((connection_id, user_id, role, orders))
        return True

    def named(self, event):
        return [payload for name, payload, _ in self.events if name == event]


class FakeOrderApi:
    """Stands in for razorpay.Client().order."""

    def __init__(self):
        self.calls = []
        self.error = None

    def create(self, data=None, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append((data, kwargs))
        return {
            "id": f"order_gw_{len(self.calls)}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }


class FakeRazorpayClient:
    def __init__(self):
        self.order = FakeOrderApi()


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'keeva.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def order_repo(session_factory):
    return SqlAlchemyOrderRepository(session_factory)


@pytest.fixture
def user_repo(session_factory):
    return SqlAlchemyUserRepository(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def razorpay_client():
    return FakeRazorpayClient()


@pytest.fixture
def gateway(razorpay_client):
    return RazorpayGateway(key_id=GATEWAY_KEY_ID, key_secret=GATEWAY_SECRET, client=razorpay_client)


@pytest.fixture
def gateway_secret():
    return GATEWAY_SECRET


@pytest.fixture
def checkout(order_repo, user_repo, gateway, notifier):
    coupons = CouponBook({
        "SAVE30NOW": {"type": "flat", "value": 30, "min_subtotal": 99},
        "TENOFF": {"type": "percent", "value": 10, "max_discount": 50},
    })
    return CheckoutService(order_repo, user_repo, gateway, notifier, coupon_book=coupons)


@pytest.fixture
def lifecycle(order_repo, notifier):
    return OrderLifecycleManager(order_repo, notifier)


def _make_user(user_repo, user_id, phone, role="customer", with_address=True):
    addresses = []
    if with_address:
        addresses = [SavedAddress(
            id=f"addr-{user_id}",
            house="12B",
            street="MG Road",
            city="Bengaluru",
            state="Karnataka",
            pincode="560001",
            is_default=True,
        )]
    return user_repo.add(User(id=user_id, phone=phone, name=f"User {user_id}", role=role, addresses=addresses))


@pytest.fixture
def customer(user_repo):
    return _make_user(user_repo, "cust-1", "919000000001")


@pytest.fixture
def other_customer(user_repo):
    return _make_user(user_repo, "cust-2", "919000000002")


@pytest.fixture
def admin(user_repo):
    return _make_user(user_repo, "admin-1", "919000000010", role="admin", with_address=False)


@pytest.fixture
def partner(user_repo):
    return _make_user(user_repo, "partner-1", "919000000020", role="partner", with_address=False)


@pytest.fixture
def rider(user_repo):
    return _make_user(user_repo, "rider-1", "919000000030", role="rider", with_address=False)


@pytest.fixture
def cart_body():
    """Factory for order bodies; defaults to one line of milk, cash on delivery."""

    def make(**overrides):
        data = {
            "items": [{"id": "p1", "name": "Milk", "price": 35, "qty": 2}],
            "pricing": {"deliveryFee": 0, "tax": 0, "couponDiscount": 0},
            "payment": {"method": "cod"},
        }
        data.update(overrides)
        return OrderCreateBody.model_validate(data)

    return make


@pytest.fixture
def placed_order(checkout, customer, cart_body):
    return checkout.create_cod_order(customer.id, cart_body())
