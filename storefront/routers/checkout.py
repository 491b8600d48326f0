from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db, get_payment_gateway, get_webhook_gateway
from storefront.core.errors import (
    DiscountApplicationFailedError,
    EmptyCartError,
    GatewaySessionNotFoundError,
    GatewayUnavailableError,
    InvalidDiscountCodeError,
    InvalidWebhookPayloadError,
    MissingIdentityError,
    PaymentNotCompletedError,
    PaymentsUnavailableError,
    UniqueConstraintViolation,
    UnresolvedIdentityError,
    WebhookSignatureError,
)
from storefront.core.id_utils import generate_row_id
from storefront.core.money import to_money
from storefront.core.observability import log_event
from storefront.core.security import get_optional_user
from storefront.db.store import RecordStore
from storefront.models.checkout import PaymentWebhookEvent
from storefront.models.user import User
from storefront.schemas.checkout import (
    CheckoutCreateIn,
    CheckoutCreateOut,
    CheckoutSessionSummaryOut,
    CheckoutVerifyOut,
    PaymentWebhookOut,
    PurchasedItemOut,
    PurchaseLineResultOut,
)
from storefront.services.checkout_service import BuyerIdentity, CheckoutLine, build_checkout_session
from storefront.services.payment_provider import GatewayWebhookEvent, PaymentGateway
from storefront.services.reconciliation_service import ReconciliationResult, reconcile_checkout_session

router = APIRouter(prefix="/checkout", tags=["checkout"])
webhooks_router = APIRouter(prefix="/payment-webhooks", tags=["checkout"])

COMPLETION_EVENT_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}


def _verify_out(result: ReconciliationResult) -> CheckoutVerifyOut:
    session = result.session
    return CheckoutVerifyOut(
        session=CheckoutSessionSummaryOut(
            id=session.id,
            payment_status=session.payment_status,
            amount_total=session.amount_total,
            currency=session.currency,
            customer_email=session.customer_email or result.owner.email,
            customer_name=session.customer_name,
            line_items=[
                PurchasedItemOut(
                    id=line.product_id,
                    title=line.title,
                    quantity=line.quantity,
                    amount=line.amount_total,
                )
                for line in session.line_items
            ],
        ),
        purchases_saved=result.purchases_saved,
        purchase_results=[
            PurchaseLineResultOut(
                product_id=line.product_id,
                title=line.title,
                status=line.status,
                amount=line.amount,
                purchase_id=line.purchase_id,
                error=line.error,
            )
            for line in result.purchase_results
        ],
        cart_cleared=result.cart_cleared,
        confirmation_email_queued=result.confirmation_email_queued,
        line_source=result.line_source,
    )


@router.post(
    "/create",
    response_model=CheckoutCreateOut,
    summary="Create a payment checkout session",
    description=(
        "Builds a hosted checkout session for the submitted cart lines. Guests must supply "
        "`customer_email`; signed-in buyers default to their account email."
    ),
    responses=error_responses(
        401,
        422,
        500,
        domain_errors=(
            EmptyCartError,
            MissingIdentityError,
            InvalidDiscountCodeError,
            DiscountApplicationFailedError,
            GatewayUnavailableError,
            PaymentsUnavailableError,
        ),
    ),
)
def create_checkout(
    payload: CheckoutCreateIn,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: User | None = Depends(get_optional_user),
):
    result = build_checkout_session(
        db,
        gateway=gateway,
        lines=[
            CheckoutLine(
                product_id=item.id,
                title=item.title,
                unit_price=to_money(item.price),
                quantity=item.quantity,
                category=item.category,
                image_url=item.image,
            )
            for item in payload.items
        ],
        buyer=BuyerIdentity(
            email=payload.customer_email or (user.email if user else None),
            user_id=user.id if user else None,
        ),
        discount_code=payload.discount_code,
    )
    return CheckoutCreateOut(
        session_id=result.session_id,
        redirect_url=result.redirect_url,
        original_total=float(result.original_total),
        discount_amount=float(result.discount_amount),
        total_amount=float(result.total_amount),
        currency=result.currency,
        discount_code=result.discount_code,
    )


@router.get(
    "/verify",
    response_model=CheckoutVerifyOut,
    summary="Verify payment and record purchases",
    description=(
        "Confirms the session with the payment gateway and records one purchase per product. "
        "Safe to call repeatedly: lines already recorded report `already_exists`."
    ),
    responses=error_responses(
        401,
        422,
        500,
        domain_errors=(
            PaymentNotCompletedError,
            UnresolvedIdentityError,
            GatewaySessionNotFoundError,
            GatewayUnavailableError,
            PaymentsUnavailableError,
        ),
    ),
)
def verify_checkout(
    background: BackgroundTasks,
    session_id: str = Query(min_length=1, max_length=255),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: User | None = Depends(get_optional_user),
):
    result = reconcile_checkout_session(
        db,
        gateway=gateway,
        session_id=session_id,
        current_user=user,
        background=background,
    )
    return _verify_out(result)


def _record_webhook_event(db: Session, *, provider: str, event: GatewayWebhookEvent) -> bool:
    """False when another delivery of the same event got there first."""
    try:
        RecordStore(db, PaymentWebhookEvent).insert(
            PaymentWebhookEvent(
                id=generate_row_id(),
                provider=provider,
                event_id=event.id,
                event_type=event.type,
                checkout_session_id=event.checkout_session_id,
                payload_json=event.payload,
            )
        )
    except UniqueConstraintViolation:
        return False
    return True


@webhooks_router.post(
    "/{provider}",
    response_model=PaymentWebhookOut,
    summary="Process payment webhook callback",
    description=(
        "Verifies the provider signature, then reconciles completed checkout sessions. "
        "Redelivered events are acknowledged with `duplicate: true`."
    ),
    responses=error_responses(
        404,
        422,
        500,
        domain_errors=(
            WebhookSignatureError,
            InvalidWebhookPayloadError,
            UnresolvedIdentityError,
            GatewayUnavailableError,
            PaymentsUnavailableError,
        ),
    ),
)
async def process_payment_webhook(
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_webhook_gateway),
):
    raw_body = await request.body()
    event = gateway.construct_webhook_event(raw_body, request.headers.get(gateway.signature_header))
    normalized_provider = gateway.name

    duplicate_event = RecordStore(db, PaymentWebhookEvent).find_one("event_id", event.id)
    if duplicate_event:
        return PaymentWebhookOut(
            provider=normalized_provider,
            event_id=event.id,
            event_type=event.type,
            checkout_session_id=duplicate_event.checkout_session_id,
            duplicate=True,
        )

    processed = False
    purchases_saved: bool | None = None
    detail: str | None = None
    if event.type in COMPLETION_EVENT_TYPES and event.checkout_session_id:
        try:
            result = reconcile_checkout_session(
                db,
                gateway=gateway,
                session_id=event.checkout_session_id,
                background=background,
            )
        except PaymentNotCompletedError as exc:
            # Async payment methods complete later with their own event.
            detail = f"payment_status={exc.payment_status}"
        else:
            processed = True
            purchases_saved = result.purchases_saved
    else:
        log_event(
            "webhook_event_ignored",
            provider=normalized_provider,
            event_id=event.id,
            event_type=event.type,
        )
        detail = "event type not handled"

    recorded = _record_webhook_event(db, provider=normalized_provider, event=event)
    return PaymentWebhookOut(
        provider=normalized_provider,
        event_id=event.id,
        event_type=event.type,
        checkout_session_id=event.checkout_session_id,
        duplicate=not recorded,
        processed=processed,
        purchases_saved=purchases_saved,
        detail=detail,
    )
