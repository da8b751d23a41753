import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from keeva.infrastructure.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    phone = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    role = Column(String, default="customer", nullable=False)  # customer, admin, partner, rider
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    addresses = relationship("SavedAddress", back_populates="user", lazy="selectin")


class SavedAddress(Base):
    """Address book entry. Orders copy it, they never point at it."""

    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    house = Column(String, nullable=True)
    street = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    pincode = Column(String, nullable=True)
    contact_name = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="addresses")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String, unique=True, index=True, nullable=False)  # e.g. ORD1718000000000000042A3F1
    user_id = Column(String(36), ForeignKey("users.id"), index=True, nullable=False)

    # Embedded sub-documents, stored as JSON the same way the cart items always were.
    # Replace (never mutate in place) so SQLAlchemy sees the change.
    items = Column(JSON, nullable=False)
    pricing = Column(JSON, nullable=False)
    address = Column(JSON, nullable=False)
    delivery = Column(JSON, nullable=False)
    payment = Column(JSON, nullable=False)
    status_history = Column(JSON, nullable=False)

    gateway_order_id = Column(String, unique=True, index=True, nullable=True)
    coupon_code = Column(String, nullable=True)
    status = Column(String, default="Pending", nullable=False)
    cancellation_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "user": self.user_id,
            "items": self.items,
            "pricing": self.pricing,
            "address": self.address,
            "delivery": self.delivery,
            "payment": self.payment,
            "couponCode": self.coupon_code,
            "status": self.status,
            "statusHistory": self.status_history,
            "cancellationReason": self.cancellation_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
