from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int  # minor units
    currency: str
    receipt: str

    def to_dict(self) -> dict:
        return {"id": self.id, "amount": self.amount, "currency": self.currency, "receipt": self.receipt}

class IPaymentGateway(ABC):
    @property
    @abstractmethod
    def key_id(self) -> Optional[str]:
        pass

    @abstractmethod
    def create_intent(self, grand_total: float, receipt: str, notes: Optional[dict] = None) -> GatewayOrder:
        pass

    @abstractmethod
    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        pass
