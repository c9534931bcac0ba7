"""
Payment status reconciliation.

Payment status moves on its own track next to the order status:

    pending -> paid | failed | refunded
    failed  -> paid        (customer retried)
    paid    -> refunded
    refunded is final

`paid` is the canonical success value; the legacy `completed` spelling is
folded into it by `PaymentStatus`. Replays of the status an order already
has are no-ops, and moves outside the table above are ignored, so gateway
events arriving late or twice can never walk a payment backwards (a
`payment.failed` after `payment.captured` leaves the order paid).

Nothing in this module touches `order.status`.
"""

import hmac
import logging
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from sqlmodel import Session

from . import models, repository
from .errors import InvalidSignature, PaymentNotConfigured, ValidationError
from .gateways import PaymentGateway, build_gateway, webhook_signature
from .models import OrderStatus, PaymentProvider, PaymentStatus
from .settings import settings

logger = logging.getLogger(__name__)

_PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.pending: frozenset({PaymentStatus.paid, PaymentStatus.failed, PaymentStatus.refunded}),
    PaymentStatus.failed: frozenset({PaymentStatus.paid}),
    PaymentStatus.paid: frozenset({PaymentStatus.refunded}),
    PaymentStatus.refunded: frozenset(),
}

WEBHOOK_EVENTS: dict[str, PaymentStatus] = {
    "payment.authorized": PaymentStatus.paid,
    "payment.captured": PaymentStatus.paid,
    "payment.failed": PaymentStatus.failed,
    "payment.refunded": PaymentStatus.refunded,
}

ONLINE_PROVIDERS = (PaymentProvider.razorpay, PaymentProvider.stripe)


class WebhookOutcome(str, Enum):
    applied = "applied"
    duplicate = "duplicate"
    ignored = "ignored"
    unknown_order = "unknown_order"
    unhandled_event = "unhandled_event"


def to_minor_units(amount: Decimal | float | int) -> int:
    """Rupees to paise (or the equivalent), rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def can_change_payment_status(current: PaymentStatus, requested: PaymentStatus) -> bool:
    return PaymentStatus(requested) in _PAYMENT_TRANSITIONS[PaymentStatus(current)]


def get_provider_config(
    session: Session,
    tenant_id: int,
    provider: PaymentProvider,
) -> models.PaymentProviderConfig:
    config = repository.payment_configs.first(
        session,
        models.PaymentProviderConfig.tenant_id == tenant_id,
        models.PaymentProviderConfig.provider == provider,
        models.PaymentProviderConfig.is_active == True,  # noqa: E712
    )
    if config is None:
        raise PaymentNotConfigured("Payment not configured for this restaurant")
    return config


def _gateway_provider(order: models.Order) -> PaymentProvider:
    if order.payment_provider in ONLINE_PROVIDERS:
        return PaymentProvider(order.payment_provider)
    return PaymentProvider.razorpay


def apply_payment_status(
    session: Session,
    order: models.Order,
    new_status: PaymentStatus,
    payment_id: str | None = None,
    payment_order_id: str | None = None,
) -> WebhookOutcome:
    """
    Move the order's payment status if the precedence rules allow it.

    Does not commit. Returns `duplicate` for a replay of the current status
    and `ignored` for a move the rules reject.
    """
    current = PaymentStatus(order.payment_status)
    new_status = PaymentStatus(new_status)
    if new_status == current:
        return WebhookOutcome.duplicate
    if not can_change_payment_status(current, new_status):
        logger.warning(
            f"Order #{order.id}: ignoring payment status {new_status.value} "
            f"(already {current.value})"
        )
        return WebhookOutcome.ignored

    update = {"payment_status": new_status}
    if payment_id:
        update["payment_id"] = payment_id
    if payment_order_id:
        update["payment_order_id"] = payment_order_id
    repository.orders.update(session, order, models.OrderPaymentUpdate(**update))

    if new_status == PaymentStatus.paid and order.status == OrderStatus.cancelled:
        logger.warning(f"Order #{order.id} was paid after cancellation; refund needed")
    logger.info(f"Order #{order.id}: payment {current.value} -> {new_status.value}")
    return WebhookOutcome.applied


def create_gateway_order(
    session: Session,
    order: models.Order,
    gateway: PaymentGateway | None = None,
) -> str:
    """Mint the gateway-side order for an online-payment order and remember its id."""
    if order.payment_provider not in ONLINE_PROVIDERS:
        raise ValidationError("Order is not set up for online payment")
    if order.status == OrderStatus.cancelled:
        raise ValidationError("Order is cancelled")
    if order.payment_status == PaymentStatus.paid:
        raise ValidationError("Order is already paid")
    if order.payment_status == PaymentStatus.refunded:
        raise ValidationError("Order payment was refunded")

    config = get_provider_config(session, order.tenant_id, PaymentProvider(order.payment_provider))
    amount_minor = to_minor_units(order.total_amount)
    if amount_minor <= 0:
        raise ValidationError("Order total must be positive")

    gateway = gateway or build_gateway(config)
    gateway_order_id = gateway.create_order(amount_minor, settings.gateway_currency, f"order_{order.id}")

    repository.orders.update(session, order, models.OrderGatewayLink(payment_order_id=gateway_order_id))
    session.commit()
    session.refresh(order)
    logger.info(f"Order #{order.id}: gateway order {gateway_order_id} for {amount_minor} minor units")
    return gateway_order_id


def verify_payment(
    session: Session,
    order: models.Order,
    gateway_payment_id: str,
    gateway_order_id: str,
    signature: str,
    gateway: PaymentGateway | None = None,
) -> models.Order:
    """
    Confirm a client-reported payment. A bad signature leaves the order untouched.

    Raises ValidationError when the payment can no longer become paid (refunded).
    """
    if not gateway_payment_id or not gateway_order_id or not signature:
        raise ValidationError("Missing payment verification details")

    config = get_provider_config(session, order.tenant_id, _gateway_provider(order))
    if order.payment_order_id and order.payment_order_id != gateway_order_id:
        logger.warning(f"Order #{order.id}: verification for foreign gateway order {gateway_order_id}")
        raise InvalidSignature("Payment does not belong to this order")

    gateway = gateway or build_gateway(config)
    if not gateway.verify_payment(gateway_order_id, gateway_payment_id, signature):
        logger.warning(f"Order #{order.id}: invalid payment signature")
        raise InvalidSignature("Invalid payment signature")

    outcome = apply_payment_status(session, order, PaymentStatus.paid, gateway_payment_id, gateway_order_id)
    if outcome == WebhookOutcome.ignored:
        raise ValidationError(f"Payment cannot be accepted once it is {PaymentStatus(order.payment_status).value}")
    session.commit()
    session.refresh(order)
    return order


def _payment_entity(payload: dict[str, Any]) -> dict[str, Any]:
    try:
        entity = payload["payment"]["entity"]
    except (KeyError, TypeError):
        raise ValidationError("Webhook payload has no payment entity")
    if not isinstance(entity, dict):
        raise ValidationError("Webhook payment entity must be an object")
    return entity


def handle_webhook(
    session: Session,
    event: str,
    payload: dict[str, Any],
    raw_body: bytes | None = None,
    signature: str | None = None,
) -> tuple[WebhookOutcome, models.Order | None]:
    """
    Reconcile one gateway event.

    Orders are matched on the gateway's order id. Unknown orders and
    unhandled events are acknowledged without changes so the gateway stops
    retrying. When the tenant configured a webhook secret, events whose body
    signature does not match are ignored.
    """
    new_status = WEBHOOK_EVENTS.get(event)
    if new_status is None:
        logger.info(f"Webhook event {event!r} acknowledged without action")
        return WebhookOutcome.unhandled_event, None

    entity = _payment_entity(payload)
    gateway_order_id = entity.get("razorpay_order_id") or entity.get("order_id")
    gateway_payment_id = entity.get("razorpay_payment_id") or entity.get("id")
    if not gateway_order_id:
        raise ValidationError("Webhook payment entity has no order id")

    order = repository.orders.first(session, models.Order.payment_order_id == gateway_order_id)
    if order is None:
        logger.info(f"Order not found for gateway order id {gateway_order_id}")
        return WebhookOutcome.unknown_order, None

    config = repository.payment_configs.first(
        session,
        models.PaymentProviderConfig.tenant_id == order.tenant_id,
        models.PaymentProviderConfig.provider == _gateway_provider(order),
    )
    if config is not None and config.webhook_secret:
        expected = webhook_signature(config.webhook_secret, raw_body or b"")
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning(f"Order #{order.id}: webhook {event} with bad signature ignored")
            return WebhookOutcome.ignored, order

    outcome = apply_payment_status(session, order, new_status, gateway_payment_id, gateway_order_id)
    if outcome == WebhookOutcome.applied:
        session.commit()
        session.refresh(order)
    return outcome, order
