"""
Public API Routes

Customer-facing endpoints reached from a table's QR code, plus the payment
gateway's webhook:
- Menu for a table
- Order placement and status
- Online payment (gateway order, client-side verification, webhook)
"""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from . import email_service, models, occupancy, orders, payments, repository
from .db import get_session
from .events import publish_order_update
from .settings import settings
from .tenants import get_tenant, get_tenant_by_slug

logger = logging.getLogger(__name__)

router = APIRouter()


def _order_in_restaurant(session: Session, slug: str, order_id: int) -> tuple[models.Tenant, models.Order]:
    tenant = get_tenant_by_slug(session, slug)
    return tenant, orders.get_order(session, tenant.id, order_id)


@router.get("/menu/{restaurant_slug}/{table_identifier}")
def get_menu(
    restaurant_slug: str,
    table_identifier: str,
    session: Session = Depends(get_session),
) -> dict:
    tenant = get_tenant_by_slug(session, restaurant_slug)
    table = orders.get_table_by_identifier(session, tenant.id, table_identifier)

    categories = repository.menu_categories.query(
        session,
        models.MenuCategory.tenant_id == tenant.id,
        models.MenuCategory.is_active == True,  # noqa: E712
        order_by=models.MenuCategory.sort_order,
    )
    result = []
    for category in categories:
        items = repository.menu_items.query(
            session,
            models.MenuItem.category_id == category.id,
            models.MenuItem.is_available == True,  # noqa: E712
            order_by=models.MenuItem.name,
        )
        result.append({
            "id": category.id,
            "name": category.name,
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "description": item.description,
                    "price": float(item.price),
                    "is_veg": item.is_veg,
                    "is_spicy": item.is_spicy,
                }
                for item in items
            ],
        })

    return {
        "restaurant": {"id": tenant.id, "name": tenant.name, "slug": tenant.slug},
        "table": {"id": table.id, "name": table.name, "identifier": table.identifier},
        "categories": result,
    }


@router.post("/order/{restaurant_slug}/{table_identifier}", status_code=status.HTTP_201_CREATED)
def create_order(
    restaurant_slug: str,
    table_identifier: str,
    order_data: models.OrderCreate,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> dict:
    tenant, table, order = orders.create_table_order(session, restaurant_slug, table_identifier, order_data)
    items = orders.list_items(session, order.id)
    occupancy.refresh_counts(session, tenant.id)

    order_dict = orders.serialize_order(order, items)
    publish_order_update(tenant.id, {
        "type": "new_order",
        "order_id": order.id,
        "table_name": table.name,
        "status": order.status.value,
        "created_at": order.created_at.isoformat(),
    }, table_id=table.id)

    background_tasks.add_task(
        email_service.send_order_confirmation,
        email_service.load_smtp_account(session, tenant.id),
        order_dict,
        order_dict["items"],
        tenant.name,
        order_data.customer_email,
    )
    return order_dict


@router.get("/order/{restaurant_slug}/{order_id}")
def get_order_status(
    restaurant_slug: str,
    order_id: int,
    session: Session = Depends(get_session),
) -> dict:
    _, order = _order_in_restaurant(session, restaurant_slug, order_id)
    return orders.serialize_order(order, orders.list_items(session, order.id))


@router.post("/payment/create-order", status_code=status.HTTP_201_CREATED)
def create_payment_order(
    request_data: models.GatewayOrderRequest,
    session: Session = Depends(get_session),
) -> dict:
    """Mint the gateway order the checkout widget needs."""
    tenant, order = _order_in_restaurant(session, request_data.restaurant_slug, request_data.order_id)
    gateway_order_id = payments.create_gateway_order(session, order)
    config = payments.get_provider_config(session, tenant.id, order.payment_provider)
    return {
        "gateway_order_id": gateway_order_id,
        "provider": order.payment_provider.value,
        "amount": float(order.total_amount),
        "amount_minor": payments.to_minor_units(order.total_amount),
        "currency": settings.gateway_currency,
        "key_id": config.key_id,
    }


@router.post("/payment/verify")
def verify_payment(
    request_data: models.PaymentVerifyRequest,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> dict:
    tenant, order = _order_in_restaurant(session, request_data.restaurant_slug, request_data.order_id)
    order = payments.verify_payment(
        session,
        order,
        gateway_payment_id=request_data.razorpay_payment_id,
        gateway_order_id=request_data.razorpay_order_id,
        signature=request_data.razorpay_signature,
    )

    publish_order_update(tenant.id, {
        "type": "order_paid",
        "order_id": order.id,
        "payment_status": order.payment_status.value,
    }, table_id=order.table_id)
    background_tasks.add_task(
        email_service.send_payment_confirmation,
        email_service.load_smtp_account(session, tenant.id),
        orders.serialize_order(order),
        tenant.name,
    )
    return {"success": True, "order_id": order.id, "payment_id": order.payment_id}


def _reconcile_webhook(
    session: Session,
    background_tasks: BackgroundTasks,
    event: str,
    body: dict,
    raw_body: bytes,
    signature: str | None,
) -> dict:
    try:
        outcome, order = payments.handle_webhook(
            session,
            event,
            body.get("payload") or {},
            raw_body=raw_body,
            signature=signature,
        )
        if outcome == payments.WebhookOutcome.applied and order is not None:
            publish_order_update(order.tenant_id, {
                "type": "payment_update",
                "order_id": order.id,
                "payment_status": order.payment_status.value,
            }, table_id=order.table_id)
            if order.payment_status == models.PaymentStatus.paid:
                tenant = get_tenant(session, order.tenant_id, include_inactive=True)
                background_tasks.add_task(
                    email_service.send_payment_confirmation,
                    email_service.load_smtp_account(session, order.tenant_id),
                    orders.serialize_order(order),
                    tenant.name,
                )
    except Exception as e:
        logger.exception(f"Webhook error for event {event}: {e}")
        session.rollback()
        return {"status": "acknowledged", "error": str(e)}

    return {"status": "acknowledged", "outcome": outcome.value}


@router.post("/payment/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_razorpay_signature: str | None = Header(default=None),
    session: Session = Depends(get_session),
) -> dict:
    """Gateway callback. Answers 200 once the body is readable; errors are logged."""
    raw_body = await request.body()
    try:
        body = json.loads(raw_body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    event = body.get("event") if isinstance(body, dict) else None
    if not event:
        raise HTTPException(status_code=400, detail="Event type missing")

    # Database, Redis and gateway calls block; keep them off the event loop
    return await run_in_threadpool(
        _reconcile_webhook, session, background_tasks, event, body, raw_body, x_razorpay_signature
    )
