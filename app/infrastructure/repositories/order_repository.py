import logging
from typing import Callable, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DbSession

from app.domain.models import CompletedOrder
from app.infrastructure.database import CompletedOrderRecord, SessionLocal
from app.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)


def _to_domain(row: CompletedOrderRecord) -> CompletedOrder:
    return CompletedOrder.model_validate({
        "id": row.id,
        "items": row.items or [],
        "totalCost": row.total_cost,
        "status": row.status,
        "timestamp": row.created_at,
        "customerInfo": row.customer_info or {},
    })


class SqlOrderRepository(IOrderRepository):

    def __init__(self, session_factory: Callable[[], DbSession] = SessionLocal):
        self.session_factory = session_factory

    def save_order(self, order: CompletedOrder) -> bool:
        session = self.session_factory()
        try:
            wire = order.to_wire()
            record = CompletedOrderRecord(
                id=order.id,
                status=order.status,
                items=wire["items"],
                total_cost=order.total_cost,
                customer_info=wire["customerInfo"],
                created_at=order.timestamp,
            )
            session.add(record)
            session.commit()
            logger.info(f"✅ Stored completed order {order.id} (total {order.total_cost})")
            return True
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error saving order {order.id}: {e}")
            session.rollback()
            return False
        finally:
            session.close()

    def get_order(self, order_id: str) -> Optional[CompletedOrder]:
        session = self.session_factory()
        try:
            row = session.get(CompletedOrderRecord, order_id)
            return _to_domain(row) if row else None
        finally:
            session.close()

    def get_all_orders(self, limit: int = 50) -> List[CompletedOrder]:
        """
        Retrieves the latest completed orders.
        Ordered by created_at DESC (Newest first).
        """
        session = self.session_factory()
        try:
            rows = (
                session.query(CompletedOrderRecord)
                .order_by(desc(CompletedOrderRecord.created_at))
                .limit(limit)
                .all()
            )
            return [_to_domain(row) for row in rows]
        finally:
            session.close()
