import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import pytz

from app.core.config import settings
from app.core.exceptions import EmptyOrderError, OrderingError
from app.domain.models import (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_DRAFT,
    CompletedOrder,
    MenuItem,
    Order,
    OrderLine,
)

logger = logging.getLogger(__name__)


def recalculate_total(order: Order) -> int:
    """Recompute totalCost from the lines. Never adjust it incrementally."""
    order.total_cost = sum(line.price * line.quantity for line in order.items)
    return order.total_cost


def _find_line(order: Order, item_id: str) -> Optional[OrderLine]:
    for line in order.items:
        if line.item_id == item_id:
            return line
    return None


def _ensure_draft(order: Order) -> None:
    if order.status != ORDER_STATUS_DRAFT:
        raise OrderingError("Cannot modify a confirmed order", {"status": order.status})


def add_item(order: Order, item: MenuItem, quantity: int) -> Order:
    _ensure_draft(order)
    if quantity <= 0:
        logger.warning(f"Ignoring add of {item.name} with non-positive quantity {quantity}")
        return order

    line = _find_line(order, item.id)
    if line:
        line.quantity += quantity
    else:
        order.items.append(OrderLine(item_id=item.id, name=item.name, price=item.price, quantity=quantity))

    recalculate_total(order)
    return order


def remove_item(order: Order, item_id: str) -> Order:
    _ensure_draft(order)
    remaining = [line for line in order.items if line.item_id != item_id]
    if len(remaining) == len(order.items):
        logger.debug(f"Remove of {item_id} skipped: not in order")
    order.items = remaining
    recalculate_total(order)
    return order


def update_quantity(order: Order, item_id: str, quantity: int) -> Order:
    _ensure_draft(order)
    line = _find_line(order, item_id)
    if line is None:
        logger.debug(f"Update of {item_id} skipped: not in order")
        return order

    if quantity <= 0:
        return remove_item(order, item_id)

    line.quantity = quantity
    recalculate_total(order)
    return order


def finalize_order(
    order: Order,
    customer_info: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> CompletedOrder:
    """
    Promote the order to a CompletedOrder and reset `order` to an empty draft.

    Raises EmptyOrderError (leaving the order untouched) when there are no lines.
    """
    _ensure_draft(order)
    if not order.items:
        raise EmptyOrderError()

    completed = CompletedOrder(
        id=str(uuid.uuid4()),
        items=[line.model_copy() for line in order.items],
        total_cost=recalculate_total(order),
        status=ORDER_STATUS_CONFIRMED,
        timestamp=now or datetime.now(pytz.timezone(settings.TIMEZONE)),
        customer_info=dict(customer_info or {}),
    )

    order.items = []
    order.total_cost = 0
    order.status = ORDER_STATUS_DRAFT
    return completed
