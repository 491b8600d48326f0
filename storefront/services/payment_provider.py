"""Payment gateway clients.

Every provider speaks in the frozen dataclasses below; raw gateway payloads
never leave this module. ``stub`` keeps sessions in memory and signs webhooks
with ``PAYMENT_WEBHOOK_SECRET``; ``stripe`` talks to Stripe Checkout.
"""

import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Protocol

import stripe

from storefront.core.config import settings
from storefront.core.errors import (
    GatewayPayloadError,
    GatewaySessionNotFoundError,
    GatewayUnavailableError,
    InvalidWebhookPayloadError,
    PaymentsUnavailableError,
    WebhookSignatureError,
)
from storefront.core.observability import log_event

PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


@dataclass(frozen=True)
class GatewayLineItemIn:
    product_id: str
    title: str
    unit_amount: int
    quantity: int
    image_url: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class GatewayCheckoutRequest:
    line_items: tuple[GatewayLineItemIn, ...]
    currency: str
    customer_email: str
    success_url: str
    cancel_url: str
    metadata: dict[str, str] = field(default_factory=dict)
    expires_at: datetime | None = None
    coupon_id: str | None = None


@dataclass(frozen=True)
class GatewayCheckoutSession:
    provider: str
    id: str
    url: str | None


@dataclass(frozen=True)
class GatewayLineItem:
    product_id: str | None
    title: str
    quantity: int
    unit_amount: int | None = None
    # After discounts, in minor units.
    amount_total: int | None = None


@dataclass(frozen=True)
class GatewaySessionState:
    id: str
    payment_status: str
    amount_total: int | None
    currency: str | None
    customer_email: str | None
    customer_name: str | None
    line_items: tuple[GatewayLineItem, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_PAYMENT_STATUSES


@dataclass(frozen=True)
class GatewayWebhookEvent:
    id: str
    type: str
    checkout_session_id: str | None
    payload: dict[str, Any]


class PaymentGateway(Protocol):
    name: str
    signature_header: str

    def create_checkout_session(self, request: GatewayCheckoutRequest) -> GatewayCheckoutSession:
        ...

    def retrieve_checkout_session(self, session_id: str) -> GatewaySessionState:
        ...

    def create_coupon(self, percent_off: Decimal) -> str:
        ...

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> GatewayWebhookEvent:
        ...


def _metadata_str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise GatewayPayloadError(f"Expected integer amount from gateway, got {type(value).__name__}")
    return value


def _webhook_event_from_dict(data: dict[str, Any]) -> GatewayWebhookEvent:
    event_id = data.get("id")
    event_type = data.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise InvalidWebhookPayloadError("Webhook event id is required")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidWebhookPayloadError("Webhook event type is required")

    event_object = (data.get("data") or {}).get("object") or {}
    session_id = event_object.get("id") if isinstance(event_object, dict) else None
    return GatewayWebhookEvent(
        id=event_id,
        type=event_type,
        checkout_session_id=session_id if isinstance(session_id, str) and session_id else None,
        payload=data,
    )


class StubPaymentProvider:
    """In-process gateway used in development and tests.

    Sessions start ``unpaid``; ``complete_payment`` plays the part of the buyer
    finishing the hosted payment page.
    """

    name = "stub"
    signature_header = "X-Storefront-Signature"

    def __init__(self, *, webhook_secret: str | None = None):
        self.webhook_secret = webhook_secret or settings.payment_webhook_secret
        self._sessions: dict[str, GatewaySessionState] = {}
        self.requests: dict[str, GatewayCheckoutRequest] = {}
        self.coupons: dict[str, Decimal] = {}

    def create_checkout_session(self, request: GatewayCheckoutRequest) -> GatewayCheckoutSession:
        session_id = f"cs_stub_{uuid.uuid4().hex[:24]}"
        percent_off = self.coupons.get(request.coupon_id, Decimal("0")) if request.coupon_id else Decimal("0")
        line_items = tuple(
            GatewayLineItem(
                product_id=item.product_id,
                title=item.title,
                quantity=item.quantity,
                unit_amount=item.unit_amount,
                amount_total=_discounted(item.unit_amount * item.quantity, percent_off),
            )
            for item in request.line_items
        )
        self._sessions[session_id] = GatewaySessionState(
            id=session_id,
            payment_status="unpaid",
            amount_total=sum(item.amount_total or 0 for item in line_items),
            currency=request.currency,
            customer_email=request.customer_email,
            customer_name=None,
            line_items=line_items,
            metadata=dict(request.metadata),
        )
        self.requests[session_id] = request
        return GatewayCheckoutSession(
            provider=self.name,
            id=session_id,
            url=f"{settings.public_base_url}/checkout/stub/{session_id}",
        )

    def retrieve_checkout_session(self, session_id: str) -> GatewaySessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise GatewaySessionNotFoundError(f"Checkout session not found: {session_id}")
        return state

    def create_coupon(self, percent_off: Decimal) -> str:
        coupon_id = f"coupon_stub_{uuid.uuid4().hex[:12]}"
        self.coupons[coupon_id] = Decimal(percent_off)
        return coupon_id

    def complete_payment(
        self,
        session_id: str,
        *,
        payment_status: str | None = None,
        customer_name: str | None = None,
    ) -> GatewaySessionState:
        state = self.retrieve_checkout_session(session_id)
        if payment_status is None:
            payment_status = "paid" if state.amount_total else "no_payment_required"
        state = replace(state, payment_status=payment_status, customer_name=customer_name)
        self._sessions[session_id] = state
        return state

    def put_session(self, state: GatewaySessionState) -> None:
        self._sessions[state.id] = state

    def sign(self, payload: bytes) -> str:
        digest = hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> GatewayWebhookEvent:
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")
        provided = signature.strip()
        if not provided.startswith("sha256="):
            provided = f"sha256={provided}"
        if not hmac.compare_digest(provided, self.sign(payload)):
            raise WebhookSignatureError("Invalid webhook signature")

        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise InvalidWebhookPayloadError("Webhook body is not valid JSON") from exc
        if not isinstance(data, dict):
            raise InvalidWebhookPayloadError("Webhook body must be a JSON object")
        return _webhook_event_from_dict(data)


def _discounted(amount: int, percent_off: Decimal) -> int:
    if not percent_off:
        return amount
    remaining = Decimal(amount) * (Decimal(100) - percent_off) / Decimal(100)
    return max(int(remaining.quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 0)


def _stripe_to_dict(obj: Any) -> dict[str, Any]:
    """Plain nested dicts from Stripe objects."""
    if obj is None:
        return {}
    for converter_name in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, converter_name, None)
        if callable(converter):
            result = converter()
            if isinstance(result, dict):
                return result
    if isinstance(obj, dict):
        return obj
    return dict(obj)


class StripePaymentProvider:
    name = "stripe"
    signature_header = "Stripe-Signature"

    def __init__(self, *, secret_key: str, webhook_secret: str | None, timeout_seconds: int):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    def create_checkout_session(self, request: GatewayCheckoutRequest) -> GatewayCheckoutSession:
        line_items = []
        for item in request.line_items:
            product_data: dict[str, Any] = {
                "name": item.title,
                "metadata": {"product_id": item.product_id},
            }
            if item.image_url:
                product_data["images"] = [item.image_url]
            if item.category:
                product_data["metadata"]["category"] = item.category
            line_items.append(
                {
                    "price_data": {
                        "currency": request.currency,
                        "unit_amount": item.unit_amount,
                        "product_data": product_data,
                    },
                    "quantity": item.quantity,
                }
            )

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "customer_email": request.customer_email,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": request.metadata,
        }
        if request.expires_at is not None:
            params["expires_at"] = int(request.expires_at.timestamp())
        if request.coupon_id:
            params["discounts"] = [{"coupon": request.coupon_id}]

        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as exc:
            log_event("gateway_error", level=logging.ERROR, operation="create_checkout_session", error=str(exc))
            raise GatewayUnavailableError("Unable to create checkout session with Stripe") from exc

        session_id = getattr(session, "id", None)
        if not isinstance(session_id, str) or not session_id:
            raise GatewayPayloadError("Stripe returned a checkout session without an id")
        return GatewayCheckoutSession(provider=self.name, id=session_id, url=getattr(session, "url", None))

    def retrieve_checkout_session(self, session_id: str) -> GatewaySessionState:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id,
                api_key=self.secret_key,
                expand=["line_items", "line_items.data.price.product"],
            )
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise GatewaySessionNotFoundError(f"Checkout session not found: {session_id}") from exc
            log_event("gateway_error", level=logging.ERROR, operation="retrieve_checkout_session", error=str(exc))
            raise GatewayUnavailableError("Unable to verify payment with Stripe") from exc
        except stripe.StripeError as exc:
            log_event("gateway_error", level=logging.ERROR, operation="retrieve_checkout_session", error=str(exc))
            raise GatewayUnavailableError("Unable to verify payment with Stripe") from exc

        return self._session_state(_stripe_to_dict(session))

    def _session_state(self, data: dict[str, Any]) -> GatewaySessionState:
        session_id = data.get("id")
        payment_status = data.get("payment_status")
        if not isinstance(session_id, str) or not isinstance(payment_status, str):
            raise GatewayPayloadError("Stripe checkout session is missing id or payment_status")

        details = data.get("customer_details") or {}
        line_items = []
        for raw_line in (data.get("line_items") or {}).get("data") or []:
            price = raw_line.get("price") or {}
            product = price.get("product")
            product_metadata = product.get("metadata") if isinstance(product, dict) else None
            product_id = _metadata_str_map(product_metadata).get("product_id")
            line_items.append(
                GatewayLineItem(
                    product_id=product_id or None,
                    title=str(raw_line.get("description") or (product or {}).get("name") or ""),
                    quantity=int(raw_line.get("quantity") or 1),
                    unit_amount=_optional_int(price.get("unit_amount")),
                    amount_total=_optional_int(raw_line.get("amount_total")),
                )
            )

        return GatewaySessionState(
            id=session_id,
            payment_status=payment_status,
            amount_total=_optional_int(data.get("amount_total")),
            currency=data.get("currency"),
            customer_email=details.get("email") or data.get("customer_email"),
            customer_name=details.get("name"),
            line_items=tuple(line_items),
            metadata=_metadata_str_map(data.get("metadata")),
        )

    def create_coupon(self, percent_off: Decimal) -> str:
        try:
            coupon = stripe.Coupon.create(
                api_key=self.secret_key,
                percent_off=float(percent_off),
                duration="once",
            )
        except stripe.StripeError as exc:
            log_event("gateway_error", level=logging.ERROR, operation="create_coupon", error=str(exc))
            raise GatewayUnavailableError("Unable to create discount coupon with Stripe") from exc
        return coupon.id

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> GatewayWebhookEvent:
        if not self.webhook_secret:
            log_event("payments_unavailable", level=logging.ERROR, reason="STRIPE_WEBHOOK_SECRET is not set")
            raise PaymentsUnavailableError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            raise InvalidWebhookPayloadError("Webhook body is not valid JSON") from exc
        return _webhook_event_from_dict(_stripe_to_dict(event))


_STUB_PROVIDER = StubPaymentProvider()


def _stripe_provider() -> StripePaymentProvider:
    if not settings.stripe_secret_key:
        log_event("payments_unavailable", level=logging.ERROR, reason="STRIPE_SECRET_KEY is not set")
        raise PaymentsUnavailableError("Payment processing is not configured. Please contact support.")
    return StripePaymentProvider(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.payment_gateway_timeout_seconds,
    )


_PAYMENT_PROVIDERS = {
    "stub": lambda: _STUB_PROVIDER,
    "stripe": _stripe_provider,
}


def get_payment_provider(name: str) -> PaymentGateway:
    normalized = (name or "").strip().lower()
    factory = _PAYMENT_PROVIDERS.get(normalized)
    if not factory:
        available = ", ".join(sorted(_PAYMENT_PROVIDERS.keys()))
        raise ValueError(f"Unknown payment provider '{name}'. Available: {available}")
    return factory()
