"""
Table occupancy derived from live orders.

A table's floor-plan status is never stored authoritatively: it is folded
from the statuses of the table's active orders, with a fixed precedence of
pending > ready > processing > available. `refresh_counts` caches the short
form (occupied/available plus a count) on the table rows.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlmodel import Session, select

from . import models, repository
from .aging import as_utc
from .models import OrderStatus, TableState, TableStatus
from .order_state import ACTIVE_STATUSES
from .settings import settings

logger = logging.getLogger(__name__)

_PROCESSING = (OrderStatus.confirmed, OrderStatus.cooking)


def status_for(statuses: Iterable[OrderStatus]) -> TableStatus:
    active = [OrderStatus(s) for s in statuses if OrderStatus(s) in ACTIVE_STATUSES]
    if not active:
        return TableStatus.available
    if OrderStatus.pending in active:
        return TableStatus.pending_orders
    if OrderStatus.ready in active:
        return TableStatus.ready_orders
    return TableStatus.processing_orders


def has_overdue(
    oldest_status_changed_at: datetime | None,
    now: datetime | None = None,
    threshold_minutes: int | None = None,
) -> bool:
    if oldest_status_changed_at is None:
        return False
    if threshold_minutes is None:
        threshold_minutes = settings.overdue_minutes
    now = as_utc(now or models.utcnow())
    return now - as_utc(oldest_status_changed_at) > timedelta(minutes=threshold_minutes)


def _occupancy(
    table: models.RestaurantTable,
    active_orders: list[models.Order],
    now: datetime,
) -> models.TableOccupancy:
    statuses = [OrderStatus(o.status) for o in active_orders]
    latest = max((as_utc(o.created_at) for o in active_orders), default=None)
    oldest = min((as_utc(o.status_changed_at) for o in active_orders), default=None)
    return models.TableOccupancy(
        id=table.id,
        tenant_id=table.tenant_id,
        name=table.name,
        identifier=table.identifier,
        qr_url=table.qr_url,
        status=status_for(statuses),
        total_active_orders=len(active_orders),
        pending_orders=statuses.count(OrderStatus.pending),
        processing_orders=sum(1 for s in statuses if s in _PROCESSING),
        ready_orders=statuses.count(OrderStatus.ready),
        latest_order_time=latest,
        oldest_order_time=oldest,
        has_overdue=has_overdue(oldest, now),
    )


def table_status(
    session: Session,
    table: models.RestaurantTable,
    now: datetime | None = None,
) -> models.TableOccupancy:
    active_orders = repository.orders.query(
        session,
        models.Order.table_id == table.id,
        models.Order.status.in_(ACTIVE_STATUSES),
    )
    return _occupancy(table, active_orders, now or models.utcnow())


def tables_with_status(
    session: Session,
    tenant_id: int,
    now: datetime | None = None,
) -> list[models.TableOccupancy]:
    """Live status of every active table of the tenant, ordered by name."""
    now = now or models.utcnow()
    tables = repository.tables.query(
        session,
        models.RestaurantTable.tenant_id == tenant_id,
        models.RestaurantTable.is_active == True,  # noqa: E712
        order_by=models.RestaurantTable.name,
    )
    orders_by_table: dict[int, list[models.Order]] = defaultdict(list)
    for order in repository.orders.query(
        session,
        models.Order.tenant_id == tenant_id,
        models.Order.table_id.is_not(None),
        models.Order.status.in_(ACTIVE_STATUSES),
    ):
        orders_by_table[order.table_id].append(order)

    return [_occupancy(table, orders_by_table[table.id], now) for table in tables]


def refresh_counts(session: Session, tenant_id: int) -> int:
    """
    Recompute the cached occupancy columns of every table of the tenant.

    Pure recomputation from the order rows, so an interrupted run is repaired
    by the next one. Returns the number of tables processed.
    """
    active_counts = dict(session.exec(
        select(models.Order.table_id, func.count(models.Order.id))
        .where(
            models.Order.tenant_id == tenant_id,
            models.Order.table_id.is_not(None),
            models.Order.status.in_(ACTIVE_STATUSES),
        )
        .group_by(models.Order.table_id)
    ).all())
    last_times = dict(session.exec(
        select(models.Order.table_id, func.max(models.Order.created_at))
        .where(
            models.Order.tenant_id == tenant_id,
            models.Order.table_id.is_not(None),
        )
        .group_by(models.Order.table_id)
    ).all())

    tables = repository.tables.query(session, models.RestaurantTable.tenant_id == tenant_id)
    for table in tables:
        count = active_counts.get(table.id, 0)
        repository.tables.update(session, table, models.TableCountsUpdate(
            active_orders_count=count,
            current_status=TableState.occupied if count > 0 else TableState.available,
            last_order_time=last_times.get(table.id),
        ))
    session.commit()
    logger.debug(f"Table counts refreshed for tenant {tenant_id}: {len(tables)} tables")
    return len(tables)
