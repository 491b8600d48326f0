from decimal import Decimal

from sqlalchemy import select

from storefront.core.errors import GatewayUnavailableError, PersistenceError
from storefront.models.checkout import CheckoutSession
from storefront.services import checkout_service


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client, email: str) -> str:
    res = client.post("/auth/register", json={"email": email, "password": "password123"})
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def _ebook_line(**overrides) -> dict:
    line = {
        "id": "champions-mindset",
        "title": "Champion's Mindset",
        "price": 9.99,
        "quantity": 1,
        "category": "E-book",
        "image": "/images/champion-mindset-product.png",
    }
    line.update(overrides)
    return line


def test_checkout_create_builds_gateway_session_and_pending_mirror(test_context):
    client, session_local, gateway = test_context

    res = client.post(
        "/checkout/create",
        json={"items": [_ebook_line()], "customer_email": "Guest@Example.com"},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["session_id"].startswith("cs_stub_")
    assert body["redirect_url"].endswith(body["session_id"])
    assert body["original_total"] == 9.99
    assert body["discount_amount"] == 0
    assert body["total_amount"] == 9.99
    assert body["currency"] == "usd"

    request = gateway.requests[body["session_id"]]
    assert request.customer_email == "guest@example.com"
    assert request.line_items[0].unit_amount == 999
    assert request.line_items[0].image_url == "http://localhost:3000/images/champion-mindset-product.png"
    assert request.success_url.endswith("/success?session_id={CHECKOUT_SESSION_ID}")
    assert request.cancel_url.endswith("/cart")
    assert request.metadata["product_ids"] == "champions-mindset"
    assert request.metadata["total_items"] == "1"
    assert "user_id" not in request.metadata
    assert request.coupon_id is None

    db = session_local()
    try:
        mirror = db.get(CheckoutSession, body["session_id"])
        assert mirror is not None
        assert mirror.status == "pending"
        assert mirror.customer_email == "guest@example.com"
        assert mirror.total_amount == Decimal("9.99")
        assert [(item.product_id, item.quantity) for item in mirror.items] == [("champions-mindset", 1)]
    finally:
        db.close()


def test_checkout_create_rejects_empty_cart(test_context):
    client, session_local, gateway = test_context

    res = client.post("/checkout/create", json={"items": [], "customer_email": "guest@example.com"})
    assert res.status_code == 400, res.text
    assert res.json()["error"]["code"] == "empty_cart"
    assert res.json()["error"]["message"] == "No items provided"
    assert gateway.requests == {}


def test_checkout_create_requires_identity_for_guests(test_context):
    client, _, gateway = test_context

    res = client.post("/checkout/create", json={"items": [_ebook_line()]})
    assert res.status_code == 400, res.text
    assert res.json()["error"]["code"] == "missing_identity"
    assert gateway.requests == {}


def test_checkout_create_uses_account_email_for_signed_in_buyer(test_context):
    client, _, gateway = test_context
    token = _register(client, "member@example.com")

    res = client.post(
        "/checkout/create",
        json={"items": [_ebook_line()]},
        headers=_auth_headers(token),
    )
    assert res.status_code == 200, res.text
    request = gateway.requests[res.json()["session_id"]]
    assert request.customer_email == "member@example.com"
    assert request.metadata["user_id"]


def test_checkout_create_rejects_unknown_discount_code(test_context):
    client, session_local, gateway = test_context

    res = client.post(
        "/checkout/create",
        json={
            "items": [_ebook_line()],
            "customer_email": "guest@example.com",
            "discount_code": "NOPE",
        },
    )
    assert res.status_code == 400, res.text
    assert res.json()["error"]["code"] == "invalid_discount_code"
    assert gateway.requests == {}
    assert gateway.coupons == {}

    db = session_local()
    try:
        assert db.execute(select(CheckoutSession)).scalars().all() == []
    finally:
        db.close()


def test_checkout_create_full_discount_attaches_gateway_coupon(test_context):
    client, session_local, gateway = test_context

    res = client.post(
        "/checkout/create",
        json={
            "items": [_ebook_line(), _ebook_line(id="viral-clip-pack-bundle", title="Viral Clip Pack Bundle", price=14.99)],
            "customer_email": "guest@example.com",
            "discount_code": "DISCOUNT100",
        },
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["original_total"] == 24.98
    assert body["discount_amount"] == 24.98
    assert body["total_amount"] == 0
    assert body["discount_code"] == "DISCOUNT100"

    request = gateway.requests[body["session_id"]]
    assert request.coupon_id is not None
    assert gateway.coupons[request.coupon_id] == Decimal("100")
    assert request.metadata["discount_code"] == "DISCOUNT100"
    assert gateway.retrieve_checkout_session(body["session_id"]).amount_total == 0

    db = session_local()
    try:
        mirror = db.get(CheckoutSession, body["session_id"])
        assert mirror.discount_code == "DISCOUNT100"
        assert mirror.discount_amount == Decimal("24.98")
        assert mirror.total_amount == Decimal("0.00")
    finally:
        db.close()


def test_checkout_create_aborts_when_coupon_cannot_be_created(test_context, monkeypatch):
    client, session_local, gateway = test_context

    def failing_coupon(percent_off):
        raise GatewayUnavailableError("Payment gateway unavailable")

    monkeypatch.setattr(gateway, "create_coupon", failing_coupon)

    res = client.post(
        "/checkout/create",
        json={
            "items": [_ebook_line()],
            "customer_email": "guest@example.com",
            "discount_code": "DISCOUNT100",
        },
    )
    assert res.status_code == 502, res.text
    assert res.json()["error"]["code"] == "discount_application_failed"
    assert gateway.requests == {}

    db = session_local()
    try:
        assert db.execute(select(CheckoutSession)).scalars().all() == []
    finally:
        db.close()


def test_checkout_create_survives_mirror_write_failure(test_context, monkeypatch):
    client, session_local, gateway = test_context

    class BrokenStore:
        def __init__(self, db, model):
            pass

        def insert(self, row):
            raise PersistenceError("Failed to insert into checkout_sessions")

    monkeypatch.setattr(checkout_service, "RecordStore", BrokenStore)

    res = client.post(
        "/checkout/create",
        json={"items": [_ebook_line()], "customer_email": "guest@example.com"},
    )
    assert res.status_code == 200, res.text
    assert res.json()["session_id"] in gateway.requests

    db = session_local()
    try:
        assert db.get(CheckoutSession, res.json()["session_id"]) is None
    finally:
        db.close()


def test_checkout_create_reports_payments_unavailable_without_stripe_key(test_context, monkeypatch):
    client, _, _ = test_context
    from storefront.core.config import settings
    from storefront.core.deps import get_payment_gateway
    from storefront.main import app
    from storefront.services.payment_provider import get_payment_provider

    monkeypatch.setattr(settings, "stripe_secret_key", None)
    app.dependency_overrides[get_payment_gateway] = lambda: get_payment_provider("stripe")

    res = client.post(
        "/checkout/create",
        json={"items": [_ebook_line()], "customer_email": "guest@example.com"},
    )
    assert res.status_code == 503, res.text
    assert res.json()["error"]["code"] == "payments_unavailable"


def test_checkout_create_validates_line_prices(test_context):
    client, _, _ = test_context

    res = client.post(
        "/checkout/create",
        json={"items": [_ebook_line(price=-1)], "customer_email": "guest@example.com"},
    )
    assert res.status_code == 422, res.text
    assert res.json()["error"]["details"][0]["field"] == "items.0.price"
