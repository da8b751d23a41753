import logging
from typing import Callable, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from keeva.core.config import settings
from keeva.core.errors import ConcurrentUpdateError, NotFoundError, OrderIdCollision
from keeva.domain.models import Order
from keeva.domain.schemas import HumanOrderId, InternalId, OrderReference
from keeva.infrastructure.database import SessionLocal
from keeva.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)


class SqlAlchemyOrderRepository(IOrderRepository):
    """Orders table access.

    Orders carry a version column, so every write is a compare-and-swap:
    ``mutate`` reloads and re-applies a change whenever another writer got
    there first.
    """

    def __init__(self, session_factory=SessionLocal, max_retries: int = settings.STATUS_UPDATE_RETRIES):
        self.session_factory = session_factory
        self.max_retries = max_retries

    def add(self, order: Order) -> Order:
        session = self.session_factory()
        try:
            session.add(order)
            session.commit()
            return order
        except IntegrityError:
            session.rollback()
            taken = session.query(Order.id).filter(Order.order_id == order.order_id).first()
            if taken is not None:
                raise OrderIdCollision(order.order_id)
            logger.error(f"❌ DB Error saving order {order.order_id}", exc_info=True)
            raise
        finally:
            session.close()

    def resolve(self, reference: OrderReference) -> Optional[Order]:
        session = self.session_factory()
        try:
            return self._find(session, reference)
        finally:
            session.close()

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        session = self.session_factory()
        try:
            return session.query(Order).filter(Order.gateway_order_id == gateway_order_id).one_or_none()
        finally:
            session.close()

    def list_orders(self, user_id: Optional[str] = None) -> List[Order]:
        """Newest first; ``user_id=None`` lists every order."""
        session = self.session_factory()
        try:
            query = session.query(Order)
            if user_id is not None:
                query = query.filter(Order.user_id == user_id)
            return query.order_by(desc(Order.created_at)).all()
        finally:
            session.close()

    def mutate(self, reference: OrderReference, change: Callable[[Order], bool]) -> Order:
        """Read-modify-write one order.

        ``change`` validates and edits the freshly loaded order and returns
        False when there is nothing to write. It may run more than once.
        """
        for attempt in range(1, self.max_retries + 1):
            session = self.session_factory()
            try:
                order = self._find(session, reference)
                if order is None:
                    raise NotFoundError("Order not found")
                if not change(order):
                    return order
                session.commit()
                return order
            except StaleDataError:
                session.rollback()
                logger.warning(f"⚠️ Concurrent update on order {reference.value} ({attempt}/{self.max_retries}), retrying")
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
        raise ConcurrentUpdateError(reference.value)

    def _find(self, session, reference: OrderReference) -> Optional[Order]:
        if isinstance(reference, InternalId):
            return session.get(Order, reference.value)
        if isinstance(reference, HumanOrderId):
            return session.query(Order).filter(Order.order_id == reference.value).one_or_none()
        raise TypeError(f"Unsupported order reference: {reference!r}")
