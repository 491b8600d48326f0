import json

from sqlalchemy import select

from storefront.core.errors import PersistenceError
from storefront.core.deps import get_webhook_gateway
from storefront.main import app
from storefront.models.checkout import CheckoutSession, PaymentWebhookEvent
from storefront.models.purchase import Purchase
from storefront.services import reconciliation_service
from storefront.services.email_service import EmailDeliveryResult
from storefront.services.payment_provider import GatewayLineItem, GatewaySessionState


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client, email: str) -> str:
    res = client.post("/auth/register", json={"email": email, "password": "password123"})
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _create_checkout(client, *, items=None, headers=None, **extra) -> str:
    payload = {
        "items": items
        or [
            {
                "id": "champions-mindset",
                "title": "Champion's Mindset",
                "price": 9.99,
                "quantity": 1,
                "category": "E-book",
            }
        ],
    }
    payload.update(extra)
    res = client.post("/checkout/create", json=payload, headers=headers or {})
    assert res.status_code == 200, res.text
    return res.json()["session_id"]


def _purchases(session_local) -> list[Purchase]:
    db = session_local()
    try:
        return list(db.execute(select(Purchase)).scalars().all())
    finally:
        db.close()


def _capture_emails(monkeypatch) -> list:
    sent = []

    def fake_send(confirmation):
        sent.append(confirmation)
        return EmailDeliveryResult(status="sent")

    monkeypatch.setattr(reconciliation_service, "send_purchase_confirmation_email", fake_send)
    return sent


def test_verify_records_purchase_with_amount_in_minor_units(test_context, monkeypatch):
    client, session_local, gateway = test_context
    sent = _capture_emails(monkeypatch)
    session_id = _create_checkout(client, customer_email="Guest@Example.com")
    gateway.complete_payment(session_id, customer_name="Guest Buyer")

    res = client.get("/checkout/verify", params={"session_id": session_id})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["purchases_saved"] is True
    assert body["line_source"] == "mirror"
    assert body["session"]["payment_status"] == "paid"
    assert body["session"]["amount_total"] == 999
    assert body["session"]["customer_email"] == "guest@example.com"
    assert body["confirmation_email_queued"] is True
    assert body["cart_cleared"] is False
    assert [(line["product_id"], line["status"], line["amount"]) for line in body["purchase_results"]] == [
        ("champions-mindset", "saved", 999)
    ]

    purchases = _purchases(session_local)
    assert len(purchases) == 1
    assert purchases[0].amount == 999
    assert purchases[0].status == "completed"
    assert purchases[0].customer_email == "guest@example.com"
    assert purchases[0].user_id is None
    assert purchases[0].checkout_session_id == session_id

    db = session_local()
    try:
        mirror = db.get(CheckoutSession, session_id)
        assert mirror.status == "completed"
        assert mirror.completed_at is not None
    finally:
        db.close()

    assert len(sent) == 1
    assert sent[0].recipient_email == "guest@example.com"
    assert sent[0].customer_name == "Guest Buyer"
    assert [item.product_id for item in sent[0].items] == ["champions-mindset"]
    assert str(sent[0].total_amount) == "9.99"


def test_verify_is_idempotent_across_repeated_calls(test_context, monkeypatch):
    client, session_local, gateway = test_context
    sent = _capture_emails(monkeypatch)
    session_id = _create_checkout(client, customer_email="repeat@example.com")
    gateway.complete_payment(session_id)

    first = client.get("/checkout/verify", params={"session_id": session_id})
    second = client.get("/checkout/verify", params={"session_id": session_id})
    assert first.status_code == 200, first.text
    assert second.status_code == 200, second.text

    first_line = first.json()["purchase_results"][0]
    second_line = second.json()["purchase_results"][0]
    assert first_line["status"] == "saved"
    assert second_line["status"] == "already_exists"
    assert second_line["purchase_id"] == first_line["purchase_id"]
    assert second.json()["purchases_saved"] is True
    assert second.json()["confirmation_email_queued"] is False

    assert len(_purchases(session_local)) == 1
    assert len(sent) == 1


def test_verify_rejects_unpaid_session(test_context):
    client, session_local, _ = test_context
    session_id = _create_checkout(client, customer_email="unpaid@example.com")

    res = client.get("/checkout/verify", params={"session_id": session_id})
    assert res.status_code == 400, res.text
    error = res.json()["error"]
    assert error["code"] == "payment_not_completed"
    assert error["message"] == "Payment not completed"
    assert error["details"] == [{"payment_status": "unpaid"}]
    assert _purchases(session_local) == []


def test_verify_unknown_session_is_not_found(test_context):
    client, _, _ = test_context

    res = client.get("/checkout/verify", params={"session_id": "cs_missing"})
    assert res.status_code == 404, res.text
    assert res.json()["error"]["code"] == "checkout_session_not_found"


def test_verify_requires_session_id(test_context):
    client, _, _ = test_context

    res = client.get("/checkout/verify")
    assert res.status_code == 422, res.text


def test_verify_treats_unique_collision_as_already_exists(test_context, monkeypatch):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="race@example.com")
    gateway.complete_payment(session_id)

    assert client.get("/checkout/verify", params={"session_id": session_id}).status_code == 200

    # Simulate a concurrent request that passed the existence check before the first insert landed.
    monkeypatch.setattr(reconciliation_service, "find_entitling_purchase", lambda db, **kwargs: None)

    res = client.get("/checkout/verify", params={"session_id": session_id})
    assert res.status_code == 200, res.text
    line = res.json()["purchase_results"][0]
    assert line["status"] == "already_exists"
    assert line["amount"] == 999
    assert res.json()["purchases_saved"] is True
    assert len(_purchases(session_local)) == 1


def test_signed_in_and_anonymous_verifications_share_one_purchase(test_context, monkeypatch):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="buyer@example.com")
    gateway.complete_payment(session_id)
    token = _register(client, "buyer@example.com")
    emails = _capture_emails(monkeypatch)

    # Both requests pass the existence check, as overlapping verifications would.
    monkeypatch.setattr(reconciliation_service, "find_entitling_purchase", lambda db, **kwargs: None)

    signed_in = client.get(
        "/checkout/verify",
        params={"session_id": session_id},
        headers=_auth_headers(token),
    )
    anonymous = client.get("/checkout/verify", params={"session_id": session_id})

    assert signed_in.status_code == 200, signed_in.text
    assert anonymous.status_code == 200, anonymous.text
    assert signed_in.json()["purchase_results"][0]["status"] == "saved"
    assert anonymous.json()["purchase_results"][0]["status"] == "already_exists"

    rows = _purchases(session_local)
    assert len(rows) == 1
    assert rows[0].owner_key == "email:buyer@example.com"
    assert rows[0].user_id is not None
    assert len(emails) == 1


def test_verify_line_failure_is_retried_on_next_call(test_context, monkeypatch):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="retry@example.com")
    gateway.complete_payment(session_id)

    def broken_lookup(db, **kwargs):
        raise PersistenceError("Failed to query purchases")

    with monkeypatch.context() as patched:
        patched.setattr(reconciliation_service, "find_entitling_purchase", broken_lookup)
        failed = client.get("/checkout/verify", params={"session_id": session_id})

    assert failed.status_code == 200, failed.text
    assert failed.json()["purchases_saved"] is False
    assert failed.json()["purchase_results"][0]["status"] == "error"
    assert failed.json()["purchase_results"][0]["error"] == "Failed to record purchase"
    assert _purchases(session_local) == []

    retried = client.get("/checkout/verify", params={"session_id": session_id})
    assert retried.status_code == 200, retried.text
    assert retried.json()["purchase_results"][0]["status"] == "saved"
    assert len(_purchases(session_local)) == 1


def test_verify_falls_back_to_gateway_line_items_without_mirror(test_context):
    client, session_local, gateway = test_context
    gateway.put_session(
        GatewaySessionState(
            id="cs_external_1",
            payment_status="paid",
            amount_total=2499,
            currency="usd",
            customer_email="Fallback@Example.com",
            customer_name=None,
            line_items=(
                GatewayLineItem(
                    product_id="champions-mindset",
                    title="Champion's Mindset",
                    quantity=1,
                    unit_amount=999,
                    amount_total=999,
                ),
                GatewayLineItem(product_id=None, title="Mystery Item", quantity=1, unit_amount=1500, amount_total=1500),
            ),
            metadata={},
        )
    )

    res = client.get("/checkout/verify", params={"session_id": "cs_external_1"})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["line_source"] == "gateway"
    assert body["purchases_saved"] is True
    assert [(line["product_id"], line["status"]) for line in body["purchase_results"]] == [
        ("champions-mindset", "saved"),
        (None, "error"),
    ]
    assert body["purchase_results"][1]["error"] == "Missing product id for line item"

    purchases = _purchases(session_local)
    assert len(purchases) == 1
    assert purchases[0].customer_email == "fallback@example.com"
    assert purchases[0].amount == 999


def test_verify_falls_back_to_metadata_email(test_context):
    client, session_local, gateway = test_context
    gateway.put_session(
        GatewaySessionState(
            id="cs_external_2",
            payment_status="paid",
            amount_total=1499,
            currency="usd",
            customer_email=None,
            customer_name=None,
            line_items=(
                GatewayLineItem(
                    product_id="viral-clip-pack-bundle",
                    title="Viral Clip Pack Bundle",
                    quantity=1,
                    unit_amount=1499,
                    amount_total=1499,
                ),
            ),
            metadata={"customer_email": "meta@example.com"},
        )
    )

    res = client.get("/checkout/verify", params={"session_id": "cs_external_2"})
    assert res.status_code == 200, res.text
    assert _purchases(session_local)[0].customer_email == "meta@example.com"


def test_verify_without_any_owner_identity_fails(test_context):
    client, session_local, gateway = test_context
    gateway.put_session(
        GatewaySessionState(
            id="cs_external_3",
            payment_status="paid",
            amount_total=999,
            currency="usd",
            customer_email=None,
            customer_name=None,
            line_items=(
                GatewayLineItem(product_id="champions-mindset", title="Champion's Mindset", quantity=1, amount_total=999),
            ),
        )
    )

    res = client.get("/checkout/verify", params={"session_id": "cs_external_3"})
    assert res.status_code == 400, res.text
    assert res.json()["error"]["code"] == "unresolved_identity"
    assert _purchases(session_local) == []


def test_verify_free_order_records_zero_amount_purchases(test_context):
    client, session_local, gateway = test_context
    session_id = _create_checkout(
        client,
        customer_email="free@example.com",
        discount_code="DISCOUNT100",
    )
    state = gateway.complete_payment(session_id)
    assert state.payment_status == "no_payment_required"

    res = client.get("/checkout/verify", params={"session_id": session_id})
    assert res.status_code == 200, res.text
    assert res.json()["purchase_results"][0]["status"] == "saved"
    assert res.json()["purchase_results"][0]["amount"] == 0
    assert _purchases(session_local)[0].amount == 0


def test_verify_signed_in_buyer_clears_purchased_cart_items(test_context):
    client, session_local, gateway = test_context
    token = _register(client, "cart-buyer@example.com")
    headers = _auth_headers(token)

    for product_id, title, price in (
        ("champions-mindset", "Champion's Mindset", 9.99),
        ("viral-clip-pack-bundle", "Viral Clip Pack Bundle", 14.99),
    ):
        added = client.post(
            "/cart/items",
            json={"product_id": product_id, "title": title, "unit_price": price},
            headers=headers,
        )
        assert added.status_code == 200, added.text

    session_id = _create_checkout(client, headers=headers)
    gateway.complete_payment(session_id)

    res = client.get("/checkout/verify", params={"session_id": session_id}, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["cart_cleared"] is True

    cart = client.get("/cart", headers=headers).json()
    assert [item["product_id"] for item in cart["items"]] == ["viral-clip-pack-bundle"]

    purchase = _purchases(session_local)[0]
    assert purchase.user_id is not None
    assert purchase.customer_email == "cart-buyer@example.com"


def _webhook_body(event_id: str, session_id: str, event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "data": {"object": {"id": session_id, "object": "checkout.session"}},
        }
    ).encode("utf-8")


def _post_webhook(client, gateway, body: bytes, *, signature: str | None = None):
    return client.post(
        "/payment-webhooks/stub",
        content=body,
        headers={
            "Content-Type": "application/json",
            gateway.signature_header: signature if signature is not None else gateway.sign(body),
        },
    )


def test_webhook_completion_records_purchases_once(test_context):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="hook@example.com")
    gateway.complete_payment(session_id)
    body = _webhook_body("evt_1", session_id)

    first = _post_webhook(client, gateway, body)
    assert first.status_code == 200, first.text
    assert first.json()["processed"] is True
    assert first.json()["duplicate"] is False
    assert first.json()["purchases_saved"] is True
    assert first.json()["checkout_session_id"] == session_id

    redelivered = _post_webhook(client, gateway, body)
    assert redelivered.status_code == 200, redelivered.text
    assert redelivered.json()["duplicate"] is True
    assert redelivered.json()["processed"] is False

    assert len(_purchases(session_local)) == 1

    # The browser verification after the webhook finds the purchase already recorded.
    verify = client.get("/checkout/verify", params={"session_id": session_id})
    assert verify.json()["purchase_results"][0]["status"] == "already_exists"

    db = session_local()
    try:
        events = db.execute(select(PaymentWebhookEvent)).scalars().all()
        assert [(event.event_id, event.provider) for event in events] == [("evt_1", "stub")]
    finally:
        db.close()


def test_webhook_rejects_bad_signature(test_context):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="forged@example.com")
    gateway.complete_payment(session_id)
    body = _webhook_body("evt_forged", session_id)

    res = _post_webhook(client, gateway, body, signature="sha256=deadbeef")
    assert res.status_code == 401, res.text
    assert res.json()["error"]["code"] == "unauthorized"

    missing = client.post("/payment-webhooks/stub", content=body, headers={"Content-Type": "application/json"})
    assert missing.status_code == 401, missing.text
    assert _purchases(session_local) == []


def test_webhook_rejects_malformed_event(test_context):
    client, _, gateway = test_context
    body = json.dumps({"type": "checkout.session.completed"}).encode("utf-8")

    res = _post_webhook(client, gateway, body)
    assert res.status_code == 400, res.text
    assert res.json()["error"]["code"] == "invalid_webhook_payload"


def test_webhook_ignores_unhandled_event_types(test_context):
    client, session_local, gateway = test_context
    body = _webhook_body("evt_refund", "cs_whatever", event_type="charge.refunded")

    res = _post_webhook(client, gateway, body)
    assert res.status_code == 200, res.text
    assert res.json()["processed"] is False
    assert res.json()["detail"] == "event type not handled"
    assert _purchases(session_local) == []


def test_webhook_for_unpaid_session_waits_for_async_payment(test_context):
    client, session_local, gateway = test_context
    session_id = _create_checkout(client, customer_email="async@example.com")

    res = _post_webhook(client, gateway, _webhook_body("evt_pending", session_id))
    assert res.status_code == 200, res.text
    assert res.json()["processed"] is False
    assert res.json()["detail"] == "payment_status=unpaid"

    gateway.complete_payment(session_id)
    succeeded = _post_webhook(
        client,
        gateway,
        _webhook_body("evt_paid", session_id, event_type="checkout.session.async_payment_succeeded"),
    )
    assert succeeded.json()["processed"] is True
    assert len(_purchases(session_local)) == 1


def test_webhook_unknown_provider_is_not_found(test_context):
    client, _, _ = test_context
    app.dependency_overrides.pop(get_webhook_gateway)

    res = client.post("/payment-webhooks/paypal", content=b"{}", headers={"Content-Type": "application/json"})
    assert res.status_code == 404, res.text
    assert res.json()["error"]["code"] == "not_found"
