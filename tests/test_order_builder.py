"""Tests for order assembly: ids, address snapshots, delivery defaults."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import pytest

from keeva.application.order_builder import (
    OrderBuilder,
    build_address_snapshot,
    build_delivery,
    build_payment,
    generate_order_id,
    select_user_address,
    store_today,
)
from keeva.application.pricing import LineItem, compute_pricing
from keeva.core.errors import NotFoundError, ValidationError
from keeva.domain.models import SavedAddress, User
from keeva.domain.schemas import InternalId


@pytest.fixture
def shopper():
    return User(
        id="u-1",
        phone="919999999999",
        name="Asha",
        role="customer",
        addresses=[
            SavedAddress(id="a-home", house="1", street="Main St", city="Pune", state="MH",
                         pincode="411001", is_default=False),
            SavedAddress(id="a-work", house="7", street="IT Park", city="Pune", state="MH",
                         pincode="411057", contact_name="Reception", is_default=True),
        ],
    )


class TestGenerateOrderId:
    def test_format(self):
        order_id = generate_order_id()
        assert order_id.startswith("ORD")
        assert len(order_id) == 3 + 13 + 5 + 4

    def test_concurrent_ids_are_unique(self):
        with ThreadPoolExecutor(max_workers=16) as pool:
            ids = list(pool.map(lambda _: generate_order_id(), range(2000)))
        assert len(set(ids)) == 2000


class TestAddressSelection:
    def test_by_id(self, shopper):
        assert select_user_address(shopper, "a-home").id == "a-home"

    def test_by_embedded_reference(self, shopper):
        assert select_user_address(shopper, None, {"_id": "a-home", "city": "Elsewhere"}).id == "a-home"

    def test_defaults_to_default_address(self, shopper):
        assert select_user_address(shopper).id == "a-work"

    def test_unknown_id(self, shopper):
        with pytest.raises(NotFoundError):
            select_user_address(shopper, "a-missing")

    def test_no_saved_address(self):
        user = User(id="u-2", phone="1", role="customer", addresses=[])
        with pytest.raises(ValidationError, match="address required"):
            select_user_address(user)

    def test_snapshot_falls_back_to_profile_contact(self, shopper):
        home = select_user_address(shopper, "a-home")
        snapshot = build_address_snapshot(shopper, home)
        assert snapshot["contactName"] == "Asha"
        assert snapshot["contactPhone"] == "919999999999"
        work = build_address_snapshot(shopper, select_user_address(shopper, "a-work"))
        assert work["contactName"] == "Reception"


class TestDelivery:
    def test_defaults(self):
        today = date(2026, 1, 15)
        assert build_delivery(None, today) == {
            "type": "standard",
            "expectedDate": "2026-01-15",
            "expectedTime": None,
            "status": "Pending",
        }

    def test_requested_slot(self):
        today = date(2026, 1, 15)
        delivery = build_delivery({"type": "Scheduled", "expectedDate": "2026-01-16T00:00:00Z", "slot": "7-9 AM"}, today)
        assert delivery["type"] == "scheduled"
        assert delivery["expectedDate"] == "2026-01-16"
        assert delivery["expectedTime"] == "7-9 AM"

    @pytest.mark.parametrize("raw", [
        {"type": "teleport"},
        {"expectedDate": "tomorrow"},
        {"expectedDate": "2026-01-14"},
    ])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError):
            build_delivery(raw, date(2026, 1, 15))

    def test_store_today_uses_timezone(self):
        assert abs(store_today("Asia/Kolkata") - date.today()) <= timedelta(days=1)


class TestOrderBuilder:
    def _build(self, shopper, **overrides):
        items = [LineItem(product_id="p1", name="Milk", price=35, quantity=2)]
        kwargs = dict(
            user=shopper,
            items=items,
            pricing=compute_pricing(items, {}),
            address=build_address_snapshot(shopper, select_user_address(shopper)),
            delivery=None,
            payment=build_payment("cod"),
            coupon_code=" save30now ",
        )
        kwargs.update(overrides)
        return OrderBuilder(tz_name="Asia/Kolkata").build(**kwargs)

    def test_builds_pending_order_with_single_history_entry(self, shopper):
        order = self._build(shopper)

        assert order.status == "Pending"
        assert len(order.status_history) == 1
        entry = order.status_history[0]
        assert entry["status"] == "Pending"
        assert entry["updatedBy"] == {"user": "u-1", "role": "customer"}
        assert order.payment == {"method": "cod", "status": "Pending", "transactionId": None}
        assert order.items[0]["productId"] == "p1"
        assert order.pricing["grandTotal"] == 70
        assert order.coupon_code == "SAVE30NOW"
        assert order.order_id.startswith("ORD")

    def test_missing_address_rejected(self, shopper):
        with pytest.raises(ValidationError, match="address required"):
            self._build(shopper, address=None)

    def test_online_payment_fields_embedded(self, shopper):
        payment = build_payment("online", {"id": "gw_123", "amount": 7000, "currency": "INR", "receipt": "ORD1"})
        order = self._build(shopper, payment=payment, order_id="ORD1")
        assert order.gateway_order_id == "gw_123"
        assert order.payment["gatewayOrderId"] == "gw_123"
        assert order.payment["amount"] == 7000


class TestAddressSnapshotIsFrozen:
    def test_editing_saved_address_does_not_touch_order(self, placed_order, session_factory, order_repo):
        session = session_factory()
        try:
            saved = session.get(SavedAddress, placed_order.address["addressId"])
            saved.street = "Somewhere Else"
            session.commit()
        finally:
            session.close()

        order = order_repo.resolve(InternalId(placed_order.id))
        assert order.address["street"] == "MG Road"
