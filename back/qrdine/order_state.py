"""
Order status state machine.

    pending -> confirmed -> cooking -> ready -> served -> completed
    cancelled is reachable from every non-terminal state.

Re-setting the current status is a legal move while the order is still open:
it restarts the aging timer, which is how staff acknowledge an order. Nothing
here is time-driven; every transition comes from an explicit caller.
"""

import logging
from datetime import datetime

from sqlmodel import Session

from . import models, repository
from .errors import InvalidTransition, NotFound
from .models import OrderStatus

logger = logging.getLogger(__name__)

_NEXT_STATUS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.pending: OrderStatus.confirmed,
    OrderStatus.confirmed: OrderStatus.cooking,
    OrderStatus.cooking: OrderStatus.ready,
    OrderStatus.ready: OrderStatus.served,
    OrderStatus.served: OrderStatus.completed,
}

TERMINAL_STATUSES = frozenset({OrderStatus.completed, OrderStatus.cancelled})

# Orders the kitchen still has to act on; these are aged and occupy tables
ACTIVE_STATUSES = (
    OrderStatus.pending,
    OrderStatus.confirmed,
    OrderStatus.cooking,
    OrderStatus.ready,
)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES


def successors(status: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses reachable in one step, cancellation excluded."""
    if is_terminal(status):
        return frozenset()
    return frozenset({status, _NEXT_STATUS[status]})


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    if is_terminal(current):
        return False
    return requested == OrderStatus.cancelled or requested in successors(current)


def transition(
    session: Session,
    order: models.Order,
    new_status: OrderStatus,
    now: datetime | None = None,
) -> models.Order:
    current = OrderStatus(order.status)
    new_status = OrderStatus(new_status)
    if not can_transition(current, new_status):
        raise InvalidTransition(current, new_status)

    # Timer restarts, so an open order is fresh again until the next refresh;
    # closed orders stop carrying a level
    aging_level = models.AgingLevel.fresh if is_active(new_status) else None
    change = models.OrderStatusChange(
        status=new_status,
        status_changed_at=now or models.utcnow(),
        aging_level=aging_level,
    )

    repository.orders.update(session, order, change)
    session.commit()
    session.refresh(order)
    logger.info(f"Order #{order.id}: {current.value} -> {new_status.value}")
    return order


def set_item_status(
    session: Session,
    order: models.Order,
    item_id: int,
    status: models.OrderItemStatus,
) -> models.OrderItem:
    """Change one line item's status; items move independently of each other."""
    item = repository.order_items.get(session, item_id)
    if item is None or item.order_id != order.id:
        raise NotFound("Order item not found")
    if is_terminal(OrderStatus(order.status)):
        raise InvalidTransition(item.status, status)

    repository.order_items.update(session, item, models.OrderItemStatusChange(status=status))
    session.commit()
    session.refresh(item)
    return item
