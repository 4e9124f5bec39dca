from abc import ABC, abstractmethod
from typing import List, Optional

from app.domain.models import CompletedOrder


class IOrderRepository(ABC):
    @abstractmethod
    def save_order(self, order: CompletedOrder) -> bool:
        pass

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[CompletedOrder]:
        pass

    @abstractmethod
    def get_all_orders(self, limit: int = 50) -> List[CompletedOrder]:
        pass
