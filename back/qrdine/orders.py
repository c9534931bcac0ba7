"""
Order creation and lookup.

Line items snapshot the menu item's name and price so that later menu edits
(or deletions) never change what a customer was billed. An order and its
items are written in one transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal

from sqlmodel import Session

from . import models, repository
from .aging import as_utc
from .errors import NotFound, ValidationError
from .models import PaymentMethod, PaymentProvider, SourceType
from .tenants import get_tenant, get_tenant_by_slug

logger = logging.getLogger(__name__)


def get_table_by_identifier(session: Session, tenant_id: int, identifier: str) -> models.RestaurantTable:
    table = repository.tables.first(
        session,
        models.RestaurantTable.tenant_id == tenant_id,
        models.RestaurantTable.identifier == identifier,
        models.RestaurantTable.is_active == True,  # noqa: E712
    )
    if table is None:
        raise NotFound("Table not found")
    return table


def _build_items(
    session: Session,
    tenant_id: int,
    requested: list[models.OrderItemCreate],
) -> tuple[list[models.OrderItem], Decimal]:
    """Validate requested lines against the menu; returns unsaved items and the subtotal."""
    if not requested:
        raise ValidationError("Order items are required")

    items = []
    subtotal = Decimal("0")
    for line in requested:
        if line.quantity < 1:
            raise ValidationError(f"Quantity for menu item {line.menu_item_id} must be at least 1")
        menu_item = repository.menu_items.get(session, line.menu_item_id)
        if menu_item is None or menu_item.tenant_id != tenant_id or not menu_item.is_available:
            raise ValidationError(f"Menu item {line.menu_item_id} is not available")

        price = Decimal(str(menu_item.price))
        items.append(models.OrderItem(
            menu_item_id=menu_item.id,
            name_snapshot=menu_item.name,
            price_snapshot=price,
            quantity=line.quantity,
            notes=line.notes,
        ))
        subtotal += price * line.quantity
    return items, subtotal


def _persist(session: Session, order: models.Order, items: list[models.OrderItem]) -> models.Order:
    order.items = items
    repository.orders.create(session, order)
    session.commit()
    session.refresh(order)
    logger.info(
        f"Order #{order.id} created for tenant {order.tenant_id} "
        f"({order.source_type.value}, {len(items)} items, total {order.total_amount})"
    )
    return order


def create_table_order(
    session: Session,
    tenant_slug: str,
    table_identifier: str,
    data: models.OrderCreate,
) -> tuple[models.Tenant, models.RestaurantTable, models.Order]:
    """Customer order placed from a table's QR page."""
    tenant = get_tenant_by_slug(session, tenant_slug)
    table = get_table_by_identifier(session, tenant.id, table_identifier)
    items, subtotal = _build_items(session, tenant.id, data.items)

    if data.payment_method == PaymentMethod.online:
        provider = data.payment_provider or PaymentProvider.razorpay
        if provider == PaymentProvider.cash:
            raise ValidationError("Online payment needs a gateway provider")
    else:
        provider = PaymentProvider.cash

    now = models.utcnow()
    order = models.Order(
        tenant_id=tenant.id,
        table_id=table.id,
        source_type=SourceType.table,
        source_reference=table.identifier,
        payment_provider=provider,
        total_amount=subtotal,
        notes=data.notes,
        created_at=now,
        status_changed_at=now,
    )
    return tenant, table, _persist(session, order, items)


def create_integration_order(
    session: Session,
    tenant_id: int,
    data: models.IntegrationOrderCreate,
) -> models.Order:
    """Order pushed by a delivery aggregator; not tied to a table."""
    if data.source_type == SourceType.table:
        raise ValidationError("Table orders must be placed through the table's QR page")
    tenant = get_tenant(session, tenant_id)
    items, subtotal = _build_items(session, tenant.id, data.items)

    tax = Decimal(str(data.tax_amount))
    discount = Decimal(str(data.discount_amount))
    if tax < 0 or discount < 0:
        raise ValidationError("Tax and discount must not be negative")
    total = subtotal + tax - discount
    if total < 0:
        raise ValidationError("Discount exceeds order value")

    now = models.utcnow()
    order = models.Order(
        tenant_id=tenant.id,
        source_type=data.source_type,
        source_reference=data.source_reference,
        payment_provider=data.payment_provider,
        total_amount=total,
        tax_amount=tax,
        discount_amount=discount,
        notes=data.notes,
        created_at=now,
        status_changed_at=now,
    )
    return _persist(session, order, items)


def get_order(session: Session, tenant_id: int, order_id: int) -> models.Order:
    return repository.orders.get_or_404(session, order_id, tenant_id=tenant_id)


def list_orders(
    session: Session,
    tenant_id: int,
    status: models.OrderStatus | None = None,
    source_type: SourceType | None = None,
    payment_status: models.PaymentStatus | None = None,
) -> list[models.Order]:
    where = [models.Order.tenant_id == tenant_id]
    if status is not None:
        where.append(models.Order.status == status)
    if source_type is not None:
        where.append(models.Order.source_type == source_type)
    if payment_status is not None:
        where.append(models.Order.payment_status == payment_status)
    return repository.orders.query(session, *where, order_by=models.Order.created_at.desc())


def list_items(session: Session, order_id: int) -> list[models.OrderItem]:
    return repository.order_items.query(
        session,
        models.OrderItem.order_id == order_id,
        order_by=models.OrderItem.id,
    )


def update_order(session: Session, order: models.Order, command: models.OrderUpdate) -> models.Order:
    repository.orders.update(session, order, command)
    session.commit()
    session.refresh(order)
    return order


def serialize_item(item: models.OrderItem) -> dict:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "menu_item_id": item.menu_item_id,
        "name_snapshot": item.name_snapshot,
        "price_snapshot": float(item.price_snapshot),
        "quantity": item.quantity,
        "status": item.status.value,
        "notes": item.notes,
    }


def serialize_order(order: models.Order, items: list[models.OrderItem] | None = None) -> dict:
    data = {
        "id": order.id,
        "tenant_id": order.tenant_id,
        "table_id": order.table_id,
        "source_type": order.source_type.value,
        "source_reference": order.source_reference,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_provider": order.payment_provider.value if order.payment_provider else None,
        "payment_order_id": order.payment_order_id,
        "payment_id": order.payment_id,
        "total_amount": float(order.total_amount),
        "tax_amount": float(order.tax_amount),
        "discount_amount": float(order.discount_amount),
        "notes": order.notes,
        "aging_level": order.aging_level.value if order.aging_level else None,
        "status_changed_at": order.status_changed_at.isoformat(),
        "created_at": order.created_at.isoformat(),
    }
    if items is not None:
        data["items"] = [serialize_item(item) for item in items]
    return data


def dashboard_metrics(session: Session, tenant_id: int, now: datetime | None = None) -> dict:
    """
    Headline numbers for the staff dashboard.

    "Today" is the UTC calendar day of `now`. Revenue only counts orders whose
    payment is `paid`; refunded and failed payments are left out.
    """
    today = as_utc(now or models.utcnow()).date()
    tables = repository.tables.query(session, models.RestaurantTable.tenant_id == tenant_id)
    categories = repository.menu_categories.query(session, models.MenuCategory.tenant_id == tenant_id)
    all_orders = repository.orders.query(session, models.Order.tenant_id == tenant_id)

    todays_orders = [o for o in all_orders if as_utc(o.created_at).date() == today]
    paid = models.PaymentStatus.paid
    total_revenue = sum((o.total_amount for o in all_orders if o.payment_status == paid), Decimal("0"))
    today_revenue = sum((o.total_amount for o in todays_orders if o.payment_status == paid), Decimal("0"))

    return {
        "total_tables": len(tables),
        "active_tables": sum(1 for t in tables if t.is_active),
        "total_categories": len(categories),
        "total_orders": len(all_orders),
        "today_orders": len(todays_orders),
        "orders_by_status": {
            status.value: sum(1 for o in all_orders if o.status == status)
            for status in models.OrderStatus
        },
        "total_revenue": float(total_revenue),
        "today_revenue": float(today_revenue),
    }
