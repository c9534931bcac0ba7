"""
Order aging: how long an open order has sat in its current status.

The level is always derivable from `status_changed_at`, the tenant's
thresholds and the clock, so `compute_for_tenant` is the source of truth and
`refresh_aging_levels` only denormalizes it onto the order rows for cheap
filtering.
"""

import logging
from datetime import datetime, timezone
from typing import NamedTuple

from sqlmodel import Session

from . import models, repository
from .errors import ValidationError
from .models import AgingLevel
from .order_state import ACTIVE_STATUSES
from .settings import settings

logger = logging.getLogger(__name__)


class Thresholds(NamedTuple):
    warning_minutes: int
    critical_minutes: int


def default_thresholds() -> Thresholds:
    return Thresholds(settings.default_warning_minutes, settings.default_critical_minutes)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_elapsed(status_changed_at: datetime, now: datetime | None = None) -> int:
    """Whole minutes since the last status change, never negative."""
    now = as_utc(now or models.utcnow())
    seconds = (now - as_utc(status_changed_at)).total_seconds()
    return max(0, int(seconds // 60))


def classify(
    status_changed_at: datetime,
    thresholds: Thresholds,
    now: datetime | None = None,
) -> AgingLevel:
    elapsed = minutes_elapsed(status_changed_at, now)
    if elapsed >= thresholds.critical_minutes:
        return AgingLevel.critical
    if elapsed >= thresholds.warning_minutes:
        return AgingLevel.warning
    return AgingLevel.fresh


def get_thresholds(session: Session, tenant_id: int) -> Thresholds:
    row = repository.aging_thresholds.first(
        session,
        models.AgingThreshold.tenant_id == tenant_id,
        models.AgingThreshold.is_active == True,  # noqa: E712
    )
    if row is None:
        return default_thresholds()
    return Thresholds(row.warning_minutes, row.critical_minutes)


def update_thresholds(
    session: Session,
    tenant_id: int,
    update: models.AgingThresholdUpdate,
) -> Thresholds:
    """Insert or replace the tenant's single threshold row."""
    if update.warning_minutes < 0 or update.critical_minutes < 0:
        raise ValidationError("Thresholds must not be negative")
    if update.warning_minutes > update.critical_minutes:
        raise ValidationError("warning_minutes must not exceed critical_minutes")

    row = repository.aging_thresholds.first(session, models.AgingThreshold.tenant_id == tenant_id)
    if row is None:
        row = repository.aging_thresholds.create(
            session,
            models.AgingThreshold(
                tenant_id=tenant_id,
                warning_minutes=update.warning_minutes,
                critical_minutes=update.critical_minutes,
            ),
        )
    else:
        repository.aging_thresholds.update(session, row, update)
        row.is_active = True
    session.commit()
    logger.info(
        f"Aging thresholds for tenant {tenant_id}: "
        f"warning={update.warning_minutes}m critical={update.critical_minutes}m"
    )
    return Thresholds(update.warning_minutes, update.critical_minutes)


def _active_orders(session: Session, tenant_id: int) -> list[models.Order]:
    return repository.orders.query(
        session,
        models.Order.tenant_id == tenant_id,
        models.Order.status.in_(ACTIVE_STATUSES),
        order_by=models.Order.created_at.desc(),
    )


def compute_for_tenant(
    session: Session,
    tenant_id: int,
    now: datetime | None = None,
) -> list[models.AgedOrder]:
    """Active orders of a tenant annotated with elapsed minutes and level, newest first."""
    now = now or models.utcnow()
    thresholds = get_thresholds(session, tenant_id)

    result = []
    for order in _active_orders(session, tenant_id):
        result.append(models.AgedOrder(
            id=order.id,
            tenant_id=order.tenant_id,
            table_id=order.table_id,
            source_type=order.source_type,
            source_reference=order.source_reference,
            status=order.status,
            payment_status=order.payment_status,
            total_amount=order.total_amount,
            status_changed_at=as_utc(order.status_changed_at),
            created_at=as_utc(order.created_at),
            minutes_elapsed=minutes_elapsed(order.status_changed_at, now),
            aging_level=classify(order.status_changed_at, thresholds, now),
            warning_minutes=thresholds.warning_minutes,
            critical_minutes=thresholds.critical_minutes,
        ))
    return result


def refresh_aging_levels(session: Session, tenant_id: int, now: datetime | None = None) -> int:
    """
    Persist the current level on every order of the tenant.

    Recomputes from scratch: active orders get their level, closed orders
    lose theirs. Running it twice with the same clock changes nothing the
    second time. Returns the number of rows written.
    """
    now = now or models.utcnow()
    thresholds = get_thresholds(session, tenant_id)
    changed = 0

    for order in _active_orders(session, tenant_id):
        level = classify(order.status_changed_at, thresholds, now)
        if order.aging_level != level:
            repository.orders.update(session, order, models.OrderAgingUpdate(aging_level=level))
            changed += 1

    stale = repository.orders.query(
        session,
        models.Order.tenant_id == tenant_id,
        models.Order.status.not_in(ACTIVE_STATUSES),
        models.Order.aging_level.is_not(None),
    )
    for order in stale:
        repository.orders.update(session, order, models.OrderAgingUpdate(aging_level=None))
        changed += 1

    session.commit()
    logger.debug(f"Aging refresh for tenant {tenant_id}: {changed} orders updated")
    return changed
