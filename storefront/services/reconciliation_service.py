"""Turns a paid gateway session into purchase rows, safely and repeatably.

Verification can run many times for one session (page refreshes, client
retries, webhook redelivery, concurrent requests). Each product line is
recorded at most once per owner: an existing completed purchase, or a
collision on ``ux_purchases_product_owner_entitled``, both report
``already_exists``. Lines are committed one at a time, so a store failure on
one line leaves the others intact and the failed line is picked up on the
next call.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    PaymentNotCompletedError,
    PersistenceError,
    UniqueConstraintViolation,
    UnresolvedIdentityError,
)
from storefront.core.id_utils import generate_row_id
from storefront.core.money import from_minor_units, to_minor_units, to_money
from storefront.core.observability import log_event
from storefront.db.store import RecordStore
from storefront.models.checkout import CHECKOUT_STATUS_COMPLETED, CheckoutSession
from storefront.models.purchase import PURCHASE_STATUS_COMPLETED, Purchase, owner_key_for
from storefront.models.user import User
from storefront.services.background import spawn_detached
from storefront.services.cart_service import clear_purchased_items
from storefront.services.email_service import (
    ConfirmationItem,
    PurchaseConfirmation,
    send_purchase_confirmation_email,
)
from storefront.services.entitlement_service import find_entitling_purchase
from storefront.services.payment_provider import GatewayLineItem, GatewaySessionState, PaymentGateway

LINE_SAVED = "saved"
LINE_ALREADY_EXISTS = "already_exists"
LINE_ERROR = "error"

SOURCE_MIRROR = "mirror"
SOURCE_GATEWAY = "gateway"


@dataclass(frozen=True)
class PurchaseLine:
    product_id: str | None
    title: str
    quantity: int
    unit_price: Decimal | None = None
    gateway_amount: int | None = None

    @property
    def amount(self) -> int:
        """Amount in minor units; the gateway's figure wins when it has one."""
        if self.gateway_amount is not None:
            return self.gateway_amount
        if self.unit_price is not None:
            return to_minor_units(to_money(self.unit_price) * self.quantity)
        return 0


@dataclass(frozen=True)
class PurchaseLineResult:
    product_id: str | None
    title: str
    status: str
    amount: int | None = None
    purchase_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PurchaseOwner:
    user_id: str | None
    email: str | None

    @property
    def owner_key(self) -> str:
        return owner_key_for(user_id=self.user_id, email=self.email)


@dataclass(frozen=True)
class ReconciliationResult:
    session: GatewaySessionState
    owner: PurchaseOwner
    line_source: str
    purchase_results: list[PurchaseLineResult] = field(default_factory=list)
    cart_cleared: bool = False
    confirmation_email_queued: bool = False

    @property
    def purchases_saved(self) -> bool:
        return any(result.status in {LINE_SAVED, LINE_ALREADY_EXISTS} for result in self.purchase_results)


def _load_mirror(db: Session, session_id: str) -> CheckoutSession | None:
    try:
        return RecordStore(db, CheckoutSession).get(session_id)
    except PersistenceError as exc:
        log_event(
            "checkout_mirror_read_failed",
            level=logging.ERROR,
            checkout_session_id=session_id,
            error=str(exc),
        )
        return None


def _gateway_amounts_by_product(gateway_lines: tuple[GatewayLineItem, ...]) -> dict[str, list[int | None]]:
    amounts: dict[str, list[int | None]] = {}
    for line in gateway_lines:
        if line.product_id:
            amounts.setdefault(line.product_id, []).append(line.amount_total)
    return amounts


def resolve_purchase_lines(
    mirror: CheckoutSession | None,
    state: GatewaySessionState,
) -> tuple[str, list[PurchaseLine]]:
    """Mirror items first, then gateway line items carrying product metadata."""
    if mirror is not None and mirror.items:
        amounts = _gateway_amounts_by_product(state.line_items)
        positional = len(state.line_items) == len(mirror.items)
        lines = []
        for position, item in enumerate(mirror.items):
            matched = amounts.get(item.product_id)
            if matched:
                gateway_amount = matched.pop(0)
            elif positional and not state.line_items[position].product_id:
                gateway_amount = state.line_items[position].amount_total
            else:
                gateway_amount = None
            lines.append(
                PurchaseLine(
                    product_id=item.product_id,
                    title=item.title,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    gateway_amount=gateway_amount,
                )
            )
        return SOURCE_MIRROR, lines

    return SOURCE_GATEWAY, [
        PurchaseLine(
            product_id=line.product_id,
            title=line.title,
            quantity=line.quantity,
            unit_price=from_minor_units(line.unit_amount) if line.unit_amount is not None else None,
            gateway_amount=line.amount_total,
        )
        for line in state.line_items
    ]


def resolve_owner(
    *,
    current_user: User | None,
    mirror: CheckoutSession | None,
    state: GatewaySessionState,
) -> PurchaseOwner:
    user_id = (
        (current_user.id if current_user else None)
        or (mirror.user_id if mirror else None)
        or state.metadata.get("user_id")
        or None
    )
    email = (
        state.customer_email
        or (mirror.customer_email if mirror else None)
        or state.metadata.get("customer_email")
        or (current_user.email if current_user else None)
    )
    email = email.strip().lower() if email else None
    if not user_id and not email:
        raise UnresolvedIdentityError("Could not determine who made this purchase")
    return PurchaseOwner(user_id=user_id, email=email or None)


def record_purchase_line(
    db: Session,
    *,
    line: PurchaseLine,
    owner: PurchaseOwner,
    session_id: str,
    currency: str,
) -> PurchaseLineResult:
    if not line.product_id:
        return PurchaseLineResult(
            product_id=None,
            title=line.title,
            status=LINE_ERROR,
            error="Missing product id for line item",
        )

    try:
        existing = find_entitling_purchase(
            db,
            product_id=line.product_id,
            user_id=owner.user_id,
            email=owner.email,
        )
        if existing is not None:
            return PurchaseLineResult(
                product_id=line.product_id,
                title=line.title,
                status=LINE_ALREADY_EXISTS,
                amount=existing.amount,
                purchase_id=existing.id,
            )

        purchase = RecordStore(db, Purchase).insert(
            Purchase(
                id=generate_row_id(),
                user_id=owner.user_id,
                customer_email=owner.email,
                owner_key=owner.owner_key,
                product_id=line.product_id,
                product_title=line.title,
                amount=line.amount,
                currency=currency,
                status=PURCHASE_STATUS_COMPLETED,
                checkout_session_id=session_id,
                purchased_at=datetime.now(timezone.utc),
            )
        )
    except UniqueConstraintViolation:
        # A concurrent verification recorded the same line first.
        return PurchaseLineResult(
            product_id=line.product_id,
            title=line.title,
            status=LINE_ALREADY_EXISTS,
            amount=line.amount,
        )
    except PersistenceError as exc:
        log_event(
            "purchase_line_failed",
            level=logging.ERROR,
            checkout_session_id=session_id,
            product_id=line.product_id,
            error=str(exc),
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )
        return PurchaseLineResult(
            product_id=line.product_id,
            title=line.title,
            status=LINE_ERROR,
            error="Failed to record purchase",
        )

    return PurchaseLineResult(
        product_id=line.product_id,
        title=line.title,
        status=LINE_SAVED,
        amount=purchase.amount,
        purchase_id=purchase.id,
    )


def _mark_mirror_completed(db: Session, mirror: CheckoutSession | None, session_id: str) -> None:
    if mirror is None or mirror.status == CHECKOUT_STATUS_COMPLETED:
        return
    try:
        RecordStore(db, CheckoutSession).update(
            session_id,
            status=CHECKOUT_STATUS_COMPLETED,
            completed_at=datetime.now(timezone.utc),
        )
    except PersistenceError as exc:
        log_event(
            "checkout_mirror_complete_failed",
            level=logging.ERROR,
            checkout_session_id=session_id,
            error=str(exc),
        )


def _clear_purchased_cart_items(db: Session, *, user_id: str, product_ids: list[str], session_id: str) -> bool:
    try:
        clear_purchased_items(db, user_id=user_id, product_ids=product_ids)
    except PersistenceError as exc:
        log_event(
            "cart_clear_failed",
            level=logging.WARNING,
            checkout_session_id=session_id,
            user_id=user_id,
            error=str(exc),
        )
        return False
    return True


def _deliver_confirmation(confirmation: PurchaseConfirmation) -> None:
    result = send_purchase_confirmation_email(confirmation)
    log_event(
        "confirmation_email_result",
        level=logging.INFO if result.status != "failed" else logging.WARNING,
        checkout_session_id=confirmation.session_id,
        recipient=confirmation.recipient_email,
        status=result.status,
        detail=result.detail,
    )


def _confirmation_for(
    *,
    owner: PurchaseOwner,
    state: GatewaySessionState,
    lines: list[PurchaseLine],
    currency: str,
) -> PurchaseConfirmation:
    recorded = [line for line in lines if line.product_id]
    total = state.amount_total if state.amount_total is not None else sum(line.amount for line in recorded)
    return PurchaseConfirmation(
        recipient_email=owner.email or "",
        session_id=state.id,
        items=tuple(
            ConfirmationItem(
                product_id=line.product_id,
                title=line.title,
                quantity=line.quantity,
                amount=from_minor_units(line.amount),
            )
            for line in recorded
        ),
        total_amount=from_minor_units(total),
        currency=currency,
        customer_name=state.customer_name,
    )


def reconcile_checkout_session(
    db: Session,
    *,
    gateway: PaymentGateway,
    session_id: str,
    current_user: User | None = None,
    background: BackgroundTasks | None = None,
) -> ReconciliationResult:
    state = gateway.retrieve_checkout_session(session_id)
    if not state.is_paid:
        raise PaymentNotCompletedError("Payment not completed", payment_status=state.payment_status)

    mirror = _load_mirror(db, session_id)
    line_source, lines = resolve_purchase_lines(mirror, state)
    owner = resolve_owner(current_user=current_user, mirror=mirror, state=state)
    currency = (state.currency or (mirror.currency if mirror else None) or settings.payment_currency).lower()

    results = [
        record_purchase_line(db, line=line, owner=owner, session_id=session_id, currency=currency)
        for line in lines
    ]

    _mark_mirror_completed(db, mirror, session_id)

    recorded_product_ids = [
        result.product_id
        for result in results
        if result.product_id and result.status in {LINE_SAVED, LINE_ALREADY_EXISTS}
    ]
    cart_cleared = False
    if owner.user_id and recorded_product_ids:
        cart_cleared = _clear_purchased_cart_items(
            db,
            user_id=owner.user_id,
            product_ids=recorded_product_ids,
            session_id=session_id,
        )

    email_queued = False
    if background is not None and owner.email and any(result.status == LINE_SAVED for result in results):
        spawn_detached(
            background,
            "purchase_confirmation_email",
            _deliver_confirmation,
            _confirmation_for(owner=owner, state=state, lines=lines, currency=currency),
        )
        email_queued = True

    return ReconciliationResult(
        session=state,
        owner=owner,
        line_source=line_source,
        purchase_results=results,
        cart_cleared=cart_cleared,
        confirmation_email_queued=email_queued,
    )
