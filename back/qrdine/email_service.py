"""
Order notification emails.

Each tenant sends from its own SMTP account (EmailConfig). Sending is
fire-and-forget: callers schedule these coroutines as background tasks and
every failure ends in a log line, never in an exception.
"""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib
from sqlmodel import Session, SQLModel

from . import models, repository
from .settings import settings

logger = logging.getLogger(__name__)

SOURCE_LABELS = {
    "zomato": "Zomato",
    "swiggy": "Swiggy",
}


class SmtpAccount(SQLModel):
    """Detached copy of a tenant's email settings, safe to use after the session closes."""
    tenant_id: int
    email_address: str
    app_password: str
    smtp_host: str
    smtp_port: int


def load_smtp_account(session: Session, tenant_id: int) -> SmtpAccount | None:
    config = repository.email_configs.first(session, models.EmailConfig.tenant_id == tenant_id)
    if config is None or not config.is_active:
        return None
    return SmtpAccount(
        tenant_id=tenant_id,
        email_address=config.email_address,
        app_password=config.app_password,
        smtp_host=config.smtp_host,
        smtp_port=config.smtp_port,
    )


async def send_email(
    account: SmtpAccount,
    to_email: str,
    subject: str,
    html_content: str,
    text_content: str | None = None,
) -> bool:
    """
    Send an email via the tenant's SMTP account.

    Returns:
        True if email sent successfully, False otherwise
    """
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = account.email_address
    message["To"] = to_email

    if text_content:
        message.attach(MIMEText(text_content, "plain"))
    message.attach(MIMEText(html_content, "html"))

    # Port 465 is implicit TLS; everything else upgrades with STARTTLS
    tls_options = {"use_tls": True} if account.smtp_port == 465 else {"start_tls": True}
    try:
        await aiosmtplib.send(
            message,
            hostname=account.smtp_host,
            port=account.smtp_port,
            username=account.email_address,
            password=account.app_password,
            **tls_options,
        )
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False
    logger.info(f"Email sent successfully to {to_email}")
    return True


def _money(amount: float) -> str:
    return f"{settings.gateway_currency} {amount:.2f}"


def _source_label(order: dict) -> str:
    if order["source_type"] == "table":
        return f"Table {order['source_reference']}"
    return SOURCE_LABELS.get(order["source_type"], order["source_reference"] or "")


def render_order_confirmation(order: dict, items: list[dict], restaurant_name: str) -> tuple[str, str, str]:
    """Return (subject, html, text) for an order confirmation."""
    subject = f"Order Confirmation - {restaurant_name} (Order #{order['id']})"
    rows = "".join(
        f"<tr><td>{item['name_snapshot']}</td>"
        f"<td style=\"text-align: center;\">{item['quantity']}</td>"
        f"<td style=\"text-align: right;\">{_money(item['price_snapshot'] * item['quantity'])}</td></tr>"
        for item in items
    )
    subtotal = order["total_amount"] - order["tax_amount"] + order["discount_amount"]
    discount_row = (
        f"<p><strong>Discount:</strong> -{_money(order['discount_amount'])}</p>"
        if order["discount_amount"] else ""
    )
    html_content = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>Order Confirmation</h2>
        <p><strong>Restaurant:</strong> {restaurant_name}</p>
        <p><strong>Order ID:</strong> {order['id']}</p>
        <p><strong>Source:</strong> {_source_label(order)}</p>
        <p><strong>Order Status:</strong> {order['status']}</p>
        <p><strong>Payment Status:</strong> {order['payment_status']}</p>
        <table style="width: 100%; border-collapse: collapse;">
            <thead><tr><th>Item</th><th>Qty</th><th>Amount</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
        <p><strong>Subtotal:</strong> {_money(subtotal)}</p>
        <p><strong>Tax:</strong> {_money(order['tax_amount'])}</p>
        {discount_row}
        <p style="font-size: 18px;"><strong>Total Amount:</strong> {_money(order['total_amount'])}</p>
    </div>
    """
    lines = [f"{item['quantity']} x {item['name_snapshot']}" for item in items]
    text_content = (
        f"Order #{order['id']} at {restaurant_name}\n"
        f"{_source_label(order)}\n\n"
        + "\n".join(lines)
        + f"\n\nTotal: {_money(order['total_amount'])}\n"
    )
    return subject, html_content, text_content


async def send_order_confirmation(
    account: SmtpAccount | None,
    order: dict,
    items: list[dict],
    restaurant_name: str,
    customer_email: str | None = None,
) -> bool:
    if account is None:
        logger.info(f"Email not configured for tenant {order['tenant_id']}. Skipping email notification.")
        return False
    subject, html_content, text_content = render_order_confirmation(order, items, restaurant_name)
    # Without a customer address the restaurant gets the copy
    return await send_email(account, customer_email or account.email_address, subject, html_content, text_content)


async def send_payment_confirmation(
    account: SmtpAccount | None,
    order: dict,
    restaurant_name: str,
    customer_email: str | None = None,
) -> bool:
    if account is None:
        logger.info(f"Email not configured for tenant {order['tenant_id']}. Skipping email notification.")
        return False
    subject = f"Payment Received - {restaurant_name} (Order #{order['id']})"
    html_content = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>Payment Received</h2>
        <p>We received {_money(order['total_amount'])} for order #{order['id']} at {restaurant_name}.</p>
        <p><strong>Payment ID:</strong> {order['payment_id'] or '-'}</p>
    </div>
    """
    text_content = (
        f"Payment of {_money(order['total_amount'])} received for order #{order['id']} "
        f"at {restaurant_name}. Payment ID: {order['payment_id'] or '-'}"
    )
    return await send_email(account, customer_email or account.email_address, subject, html_content, text_content)
