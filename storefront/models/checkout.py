from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base

CHECKOUT_STATUS_PENDING = "pending"
CHECKOUT_STATUS_COMPLETED = "completed"


class CheckoutSession(Base):
    """Local mirror of a gateway checkout session, keyed by the gateway's id."""

    __tablename__ = "checkout_sessions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CHECKOUT_STATUS_PENDING,
        server_default=CHECKOUT_STATUS_PENDING,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd", server_default="usd")
    original_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_provider: Mapped[str] = mapped_column(String(40), nullable=False, default="stripe", server_default="stripe")
    checkout_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    items: Mapped[list["CheckoutSessionItem"]] = relationship(
        back_populates="checkout_session",
        cascade="all, delete-orphan",
        order_by="CheckoutSessionItem.position",
    )

    __table_args__ = (
        Index("ix_checkout_sessions_status_created_at", "status", "created_at"),
    )


class CheckoutSessionItem(Base):
    __tablename__ = "checkout_session_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    checkout_session_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("checkout_sessions.id"),
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String(120), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    checkout_session: Mapped[CheckoutSession] = relationship(back_populates="items")


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    payload_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_payment_webhook_events_provider_created_at", "provider", "created_at"),
    )
