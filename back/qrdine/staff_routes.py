"""
Staff API Routes

Dashboard endpoints, scoped to the tenant of the caller's staff token:
- Order listing, integration orders, status/notes/item updates
- Table occupancy
- Order aging thresholds and refresh
- Dashboard metrics
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from . import aging, models, occupancy, order_state, orders
from .db import get_session
from .events import publish_order_update
from .security import get_current_tenant

logger = logging.getLogger(__name__)

router = APIRouter()

CurrentTenant = Annotated[models.Tenant, Depends(get_current_tenant)]
DbSession = Annotated[Session, Depends(get_session)]


def _order_changed(session: Session, order: models.Order, event_type: str) -> None:
    """Keep cached table counts in step and tell live dashboards."""
    occupancy.refresh_counts(session, order.tenant_id)
    publish_order_update(order.tenant_id, {
        "type": event_type,
        "order_id": order.id,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
    }, table_id=order.table_id)


# ============ ORDERS ============

@router.get("/orders")
def list_orders(
    tenant: CurrentTenant,
    session: DbSession,
    status: models.OrderStatus | None = None,
    source_type: models.SourceType | None = None,
    payment_status: models.PaymentStatus | None = None,
) -> list[dict]:
    result = orders.list_orders(
        session,
        tenant.id,
        status=status,
        source_type=source_type,
        payment_status=payment_status,
    )
    return [orders.serialize_order(order, orders.list_items(session, order.id)) for order in result]


@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_integration_order(
    order_data: models.IntegrationOrderCreate,
    tenant: CurrentTenant,
    session: DbSession,
) -> dict:
    order = orders.create_integration_order(session, tenant.id, order_data)
    _order_changed(session, order, "new_order")
    return orders.serialize_order(order, orders.list_items(session, order.id))


@router.get("/orders/{order_id}")
def get_order(order_id: int, tenant: CurrentTenant, session: DbSession) -> dict:
    order = orders.get_order(session, tenant.id, order_id)
    return orders.serialize_order(order, orders.list_items(session, order.id))


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    status_update: models.OrderStatusUpdate,
    tenant: CurrentTenant,
    session: DbSession,
) -> dict:
    order = orders.get_order(session, tenant.id, order_id)
    order = order_state.transition(session, order, status_update.status)
    _order_changed(session, order, "status_update")
    return orders.serialize_order(order)


@router.patch("/orders/{order_id}/notes")
def update_order_notes(
    order_id: int,
    notes_update: models.OrderNotesUpdate,
    tenant: CurrentTenant,
    session: DbSession,
) -> dict:
    order = orders.get_order(session, tenant.id, order_id)
    order = orders.update_order(session, order, notes_update)
    return orders.serialize_order(order)


@router.put("/orders/{order_id}/items/{item_id}/status")
def update_order_item_status(
    order_id: int,
    item_id: int,
    status_update: models.OrderItemStatusUpdate,
    tenant: CurrentTenant,
    session: DbSession,
) -> dict:
    order = orders.get_order(session, tenant.id, order_id)
    item = order_state.set_item_status(session, order, item_id, status_update.status)
    publish_order_update(tenant.id, {
        "type": "item_update",
        "order_id": order.id,
        "item_id": item.id,
        "status": item.status.value,
    }, table_id=order.table_id)
    return orders.serialize_item(item)


# ============ TABLES ============

@router.get("/tables/with-status")
def list_tables_with_status(tenant: CurrentTenant, session: DbSession) -> list[models.TableOccupancy]:
    return occupancy.tables_with_status(session, tenant.id)


@router.post("/tables/refresh-counts")
def refresh_table_counts(tenant: CurrentTenant, session: DbSession) -> dict:
    return {"tables": occupancy.refresh_counts(session, tenant.id)}


# ============ AGING ============

@router.get("/aging/thresholds")
def get_aging_thresholds(tenant: CurrentTenant, session: DbSession) -> dict:
    return aging.get_thresholds(session, tenant.id)._asdict()


@router.put("/aging/thresholds")
def update_aging_thresholds(
    thresholds: models.AgingThresholdUpdate,
    tenant: CurrentTenant,
    session: DbSession,
) -> dict:
    return aging.update_thresholds(session, tenant.id, thresholds)._asdict()


@router.get("/aging/orders")
def list_aged_orders(tenant: CurrentTenant, session: DbSession) -> list[models.AgedOrder]:
    return aging.compute_for_tenant(session, tenant.id)


@router.post("/aging/refresh")
def refresh_aging(tenant: CurrentTenant, session: DbSession) -> dict:
    return {"updated": aging.refresh_aging_levels(session, tenant.id)}


# ============ DASHBOARD ============

@router.get("/dashboard/metrics")
def dashboard_metrics(tenant: CurrentTenant, session: DbSession) -> dict:
    return {
        "restaurant": {"id": tenant.id, "name": tenant.name, "slug": tenant.slug},
        "stats": orders.dashboard_metrics(session, tenant.id),
    }
