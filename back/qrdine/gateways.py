"""
Payment gateway clients.

Each gateway mints a provider-side order for an amount in minor currency
units and confirms a client-reported payment. Credentials always come from
the tenant's PaymentProviderConfig row, never from process settings.
"""

import hashlib
import hmac
import logging

import requests
import stripe

from . import models
from .errors import PaymentGatewayError, ValidationError
from .settings import settings

logger = logging.getLogger(__name__)


def razorpay_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Hex HMAC-SHA256 of "{order_id}|{payment_id}" as Razorpay's checkout signs it."""
    message = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def webhook_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class PaymentGateway:
    provider: models.PaymentProvider

    def __init__(self, config: models.PaymentProviderConfig):
        self.config = config

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        """Return the gateway-assigned order id."""
        raise NotImplementedError

    def verify_payment(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    provider = models.PaymentProvider.razorpay

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        try:
            response = requests.post(
                f"{settings.razorpay_api_base}/orders",
                auth=(self.config.key_id, self.config.key_secret),
                json={"amount": amount_minor, "currency": currency, "receipt": receipt},
                timeout=settings.gateway_timeout_seconds,
            )
        except requests.RequestException as e:
            raise PaymentGatewayError(f"Razorpay unreachable: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"Razorpay order creation failed: {response.status_code} {response.text}")
            raise PaymentGatewayError(f"Razorpay rejected the order ({response.status_code})")
        return response.json()["id"]

    def verify_payment(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        expected = razorpay_signature(self.config.key_secret, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected, signature or "")


class StripeGateway(PaymentGateway):
    """PaymentIntents play the role of gateway orders."""

    provider = models.PaymentProvider.stripe

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> str:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency.lower(),
                api_key=self.config.key_secret,
                metadata={"receipt": receipt},
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(str(e)) from e
        return intent.id

    def verify_payment(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        # Stripe has no client-side signature; the intent itself is the proof
        try:
            intent = stripe.PaymentIntent.retrieve(gateway_order_id, api_key=self.config.key_secret)
        except stripe.StripeError as e:
            raise PaymentGatewayError(str(e)) from e
        return intent.status == "succeeded"


_GATEWAYS: dict[models.PaymentProvider, type[PaymentGateway]] = {
    models.PaymentProvider.razorpay: RazorpayGateway,
    models.PaymentProvider.stripe: StripeGateway,
}


def build_gateway(config: models.PaymentProviderConfig) -> PaymentGateway:
    gateway_cls = _GATEWAYS.get(models.PaymentProvider(config.provider))
    if gateway_cls is None:
        raise ValidationError(f"{config.provider} is not an online payment provider")
    return gateway_cls(config)
