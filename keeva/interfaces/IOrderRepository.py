from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from keeva.domain.models import Order
from keeva.domain.schemas import OrderReference

class IOrderRepository(ABC):
    @abstractmethod
    def add(self, order: Order) -> Order:
        pass

    @abstractmethod
    def resolve(self, reference: OrderReference) -> Optional[Order]:
        pass

    @abstractmethod
    def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    def list_orders(self, user_id: Optional[str] = None) -> List[Order]:
        pass

    @abstractmethod
    def mutate(self, reference: OrderReference, change: Callable[[Order], bool]) -> Order:
        pass
