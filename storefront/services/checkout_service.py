import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from storefront.core.catalog import absolute_url
from storefront.core.config import settings
from storefront.core.errors import (
    DiscountApplicationFailedError,
    EmptyCartError,
    GatewayPayloadError,
    GatewayUnavailableError,
    InvalidDiscountCodeError,
    MissingIdentityError,
    PersistenceError,
)
from storefront.core.id_utils import generate_row_id
from storefront.core.money import ZERO_MONEY, to_minor_units, to_money
from storefront.core.observability import log_event
from storefront.db.store import RecordStore
from storefront.models.checkout import CHECKOUT_STATUS_PENDING, CheckoutSession, CheckoutSessionItem
from storefront.services.discount_service import coupon_percent_off, evaluate_discount
from storefront.services.payment_provider import (
    GatewayCheckoutRequest,
    GatewayCheckoutSession,
    GatewayLineItemIn,
    PaymentGateway,
)


@dataclass(frozen=True)
class CheckoutLine:
    product_id: str
    title: str
    unit_price: Decimal
    quantity: int = 1
    category: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class BuyerIdentity:
    email: str | None
    user_id: str | None = None


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    redirect_url: str | None
    original_total: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    currency: str
    discount_code: str | None = None


def success_url() -> str:
    # Stripe substitutes the literal placeholder with the session id.
    return f"{settings.public_base_url}/success?session_id={{CHECKOUT_SESSION_ID}}"


def cancel_url() -> str:
    return f"{settings.public_base_url}/cart"


def _session_metadata(
    *,
    lines: list[CheckoutLine],
    buyer_email: str,
    user_id: str | None,
    discount_code: str | None,
) -> dict[str, str]:
    metadata = {
        "customer_email": buyer_email,
        "product_ids": ",".join(line.product_id for line in lines),
        "total_items": str(len(lines)),
    }
    if user_id:
        metadata["user_id"] = user_id
    if discount_code:
        metadata["discount_code"] = discount_code
    return metadata


def _apply_gateway_coupon(gateway: PaymentGateway, *, percent_off: Decimal) -> str:
    try:
        return gateway.create_coupon(percent_off)
    except (GatewayUnavailableError, GatewayPayloadError) as exc:
        raise DiscountApplicationFailedError(
            "Failed to apply discount code. Please try again."
        ) from exc


def _persist_pending_mirror(
    db: Session,
    *,
    gateway_session: GatewayCheckoutSession,
    lines: list[CheckoutLine],
    buyer: BuyerIdentity,
    buyer_email: str,
    currency: str,
    original_total: Decimal,
    discount_code: str | None,
    discount_amount: Decimal,
    total_amount: Decimal,
) -> None:
    mirror = CheckoutSession(
        id=gateway_session.id,
        customer_email=buyer_email,
        user_id=buyer.user_id,
        status=CHECKOUT_STATUS_PENDING,
        currency=currency,
        original_amount=original_total,
        discount_code=discount_code,
        discount_amount=discount_amount,
        total_amount=total_amount,
        payment_provider=gateway_session.provider,
        checkout_url=gateway_session.url,
    )
    mirror.items = [
        CheckoutSessionItem(
            id=generate_row_id(),
            position=position,
            product_id=line.product_id,
            title=line.title,
            unit_price=to_money(line.unit_price),
            quantity=line.quantity,
            category=line.category,
        )
        for position, line in enumerate(lines)
    ]
    try:
        RecordStore(db, CheckoutSession).insert(mirror)
    except PersistenceError as exc:
        # The gateway session is already live; reconciliation falls back to gateway metadata.
        log_event(
            "checkout_mirror_write_failed",
            level=logging.ERROR,
            checkout_session_id=gateway_session.id,
            risk="reconciliation_degraded",
            error=str(exc),
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )


def build_checkout_session(
    db: Session,
    *,
    gateway: PaymentGateway,
    lines: list[CheckoutLine],
    buyer: BuyerIdentity,
    discount_code: str | None = None,
) -> CheckoutSessionResult:
    """Creates the gateway session for a cart and records a pending local mirror.

    Nothing is written locally unless the gateway accepted the session. A
    discount that cannot be mirrored as a gateway coupon aborts the checkout.
    """
    if not lines:
        raise EmptyCartError("No items provided")

    buyer_email = (buyer.email or "").strip().lower()
    if not buyer_email:
        raise MissingIdentityError("A customer email is required to check out")

    currency = settings.payment_currency
    original_total = ZERO_MONEY
    for line in lines:
        original_total += to_money(line.unit_price) * line.quantity
    original_total = to_money(original_total)

    code = (discount_code or "").strip() or None
    discount_amount = ZERO_MONEY
    coupon_id: str | None = None
    if code:
        evaluation = evaluate_discount(code, original_total)
        if not evaluation.valid:
            raise InvalidDiscountCodeError("Invalid discount code")
        discount_amount = evaluation.discount_amount
        if discount_amount > ZERO_MONEY:
            coupon_id = _apply_gateway_coupon(
                gateway,
                percent_off=coupon_percent_off(evaluation, original_total),
            )

    total_amount = max(ZERO_MONEY, to_money(original_total - discount_amount))

    request = GatewayCheckoutRequest(
        line_items=tuple(
            GatewayLineItemIn(
                product_id=line.product_id,
                title=line.title,
                unit_amount=to_minor_units(line.unit_price),
                quantity=line.quantity,
                image_url=absolute_url(line.image_url),
                category=line.category,
            )
            for line in lines
        ),
        currency=currency,
        customer_email=buyer_email,
        success_url=success_url(),
        cancel_url=cancel_url(),
        metadata=_session_metadata(
            lines=lines,
            buyer_email=buyer_email,
            user_id=buyer.user_id,
            discount_code=code,
        ),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.checkout_session_expiry_minutes),
        coupon_id=coupon_id,
    )
    gateway_session = gateway.create_checkout_session(request)

    _persist_pending_mirror(
        db,
        gateway_session=gateway_session,
        lines=lines,
        buyer=buyer,
        buyer_email=buyer_email,
        currency=currency,
        original_total=original_total,
        discount_code=code,
        discount_amount=discount_amount,
        total_amount=total_amount,
    )

    log_event(
        "checkout_session_created",
        checkout_session_id=gateway_session.id,
        provider=gateway_session.provider,
        user_id=buyer.user_id,
        items_count=len(lines),
        original_total=original_total,
        discount_code=code,
        total_amount=total_amount,
    )
    return CheckoutSessionResult(
        session_id=gateway_session.id,
        redirect_url=gateway_session.url,
        original_total=original_total,
        discount_amount=discount_amount,
        total_amount=total_amount,
        currency=currency,
        discount_code=code,
    )
