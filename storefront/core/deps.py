from collections.abc import Generator

from fastapi import HTTPException
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.db.session import SessionLocal
from storefront.services.payment_provider import PaymentGateway, get_payment_provider


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_payment_gateway() -> PaymentGateway:
    return get_payment_provider(settings.payment_provider_default)


def get_webhook_gateway(provider: str) -> PaymentGateway:
    try:
        return get_payment_provider(provider)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
