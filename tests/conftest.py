import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import storefront.models  # noqa: F401
from storefront.core.config import settings
from storefront.core.deps import get_db, get_payment_gateway, get_webhook_gateway
from storefront.db.base import Base
from storefront.main import app
from storefront.services.auth_service import login_rate_limiter
from storefront.routers.discount import discount_rate_limiter
from storefront.services.payment_provider import StubPaymentProvider


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_smtp_host = settings.smtp_host
    settings.secret_key = "test-secret-key"
    settings.smtp_host = None

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    gateway = StubPaymentProvider()

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_webhook_gateway] = lambda: gateway

    with TestClient(app) as client:
        yield client, session_local, gateway

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.smtp_host = original_smtp_host
    login_rate_limiter.clear()
    discount_rate_limiter.clear()
