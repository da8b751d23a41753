from abc import ABC, abstractmethod
from typing import Any, List, Optional

class INotifier(ABC):
    @abstractmethod
    def emit(self, event: str, payload: Any, target_user_id: Optional[str] = None) -> None:
        pass

    @abstractmethod
    def send_snapshot(self, connection_id: str, user_id: str, role: str, orders: List[dict]) -> bool:
        pass

    def close(self) -> None:
        pass
