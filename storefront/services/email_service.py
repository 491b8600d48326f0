from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from email.message import EmailMessage
from html import escape
import smtplib
from typing import Literal

from storefront.core.catalog import (
    ACCESS_KIND_COURSE,
    product_access_kind,
    product_access_url,
    product_description,
)
from storefront.core.config import settings

EmailDeliveryStatus = Literal["sent", "not_configured", "failed"]

STORE_NAME = "Champion's Mindset"


@dataclass(frozen=True)
class EmailDeliveryResult:
    status: EmailDeliveryStatus
    detail: str | None = None


@dataclass(frozen=True)
class ConfirmationItem:
    product_id: str
    title: str
    quantity: int = 1
    # Line total in major units, as charged.
    amount: Decimal | None = None


@dataclass(frozen=True)
class PurchaseConfirmation:
    recipient_email: str
    session_id: str
    items: tuple[ConfirmationItem, ...]
    total_amount: Decimal
    currency: str
    customer_name: str | None = None


def _smtp_configured() -> bool:
    return bool(settings.smtp_host and settings.smtp_sender_email)


def order_reference(session_id: str) -> str:
    return session_id[-8:].upper()


def _format_amount(amount: Decimal, currency: str) -> str:
    if currency.lower() == "usd":
        return f"${amount:.2f}"
    return f"{amount:.2f} {currency.upper()}"


def _build_confirmation_text(confirmation: PurchaseConfirmation) -> str:
    lines = [
        f"Thank you for your purchase, {confirmation.customer_name or 'Champion'}!",
        "",
        "Your order has been processed. Your products:",
        "",
    ]
    for item in confirmation.items:
        lines.append(f"- {item.title}: {product_access_url(item.product_id)}")
    lines.extend(
        [
            "",
            f"Order ID: {order_reference(confirmation.session_id)}",
            f"Email: {confirmation.recipient_email}",
            f"Total: {_format_amount(confirmation.total_amount, confirmation.currency)}",
            "",
            f"Need help? Contact us at {settings.support_email}",
        ]
    )
    return "\n".join(lines)


def _build_confirmation_html(confirmation: PurchaseConfirmation) -> str:
    item_blocks = []
    for item in confirmation.items:
        action = "Access Course" if product_access_kind(item.product_id) == ACCESS_KIND_COURSE else "Download Now"
        quantity = f"<p><strong>Quantity:</strong> {item.quantity}</p>" if item.quantity > 1 else ""
        price = (
            f"<p><strong>Price:</strong> {escape(_format_amount(item.amount, confirmation.currency))}</p>"
            if item.amount
            else ""
        )
        item_blocks.append(
            '<div class="product-item">'
            f"<h3>{escape(item.title)}</h3>"
            f"<p>{escape(product_description(item.product_id))}</p>"
            f"{quantity}{price}"
            f'<a href="{escape(product_access_url(item.product_id), quote=True)}" class="download-btn">{action}</a>'
            "</div>"
        )

    today = datetime.now(timezone.utc).date().isoformat()
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Purchase Confirmation - {escape(STORE_NAME)}</title></head><body>"
        '<div class="container">'
        '<div class="header"><h1>Purchase Confirmed!</h1>'
        f"<p>Thank you for your purchase, {escape(confirmation.customer_name or 'Champion')}!</p></div>"
        '<div class="content"><h2>Your Digital Products</h2>'
        f"{''.join(item_blocks)}"
        "<h3>Order Details</h3>"
        f"<p><strong>Order ID:</strong> {escape(order_reference(confirmation.session_id))}</p>"
        f"<p><strong>Email:</strong> {escape(confirmation.recipient_email)}</p>"
        f"<p><strong>Total:</strong> {escape(_format_amount(confirmation.total_amount, confirmation.currency))}</p>"
        f"<p><strong>Date:</strong> {today}</p>"
        "</div>"
        f'<div class="footer"><p>Need help? Contact us at {escape(settings.support_email)}</p></div>'
        "</div></body></html>"
    )


def _deliver(message: EmailMessage) -> None:
    if settings.smtp_use_ssl:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=20) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password or "")
            server.send_message(message)
        return

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as server:
        if settings.smtp_use_starttls:
            server.starttls()
        if settings.smtp_username:
            # API-key relays take the key as the SMTP password.
            server.login(settings.smtp_username, settings.smtp_password or "")
        server.send_message(message)


def send_purchase_confirmation_email(confirmation: PurchaseConfirmation) -> EmailDeliveryResult:
    if not _smtp_configured():
        return EmailDeliveryResult(status="not_configured", detail="SMTP not configured")
    if not confirmation.items:
        return EmailDeliveryResult(status="failed", detail="No purchased items to confirm")

    message = EmailMessage()
    message["Subject"] = f"Your Purchase Confirmation - {STORE_NAME}"
    message["From"] = settings.smtp_sender_email
    message["To"] = confirmation.recipient_email
    if settings.smtp_reply_to_email:
        message["Reply-To"] = settings.smtp_reply_to_email
    message.set_content(_build_confirmation_text(confirmation))
    message.add_alternative(_build_confirmation_html(confirmation), subtype="html")

    try:
        _deliver(message)
    except (smtplib.SMTPException, OSError) as exc:
        return EmailDeliveryResult(status="failed", detail=str(exc))

    return EmailDeliveryResult(status="sent", detail=None)
