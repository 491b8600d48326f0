from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base

PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_PAID = "paid"
# Legacy rows were written as "paid"; both grant access.
ENTITLING_PURCHASE_STATUSES = (PURCHASE_STATUS_COMPLETED, PURCHASE_STATUS_PAID)

_ENTITLING_STATUS_CLAUSE = text("status IN ('completed', 'paid')")


def owner_key_for(*, user_id: str | None, email: str | None) -> str:
    """Uniqueness key for the buyer of a purchase.

    The buyer email comes from the gateway session or the checkout mirror, so
    signed-in and anonymous verifications of one session agree on it. The user
    id only keys purchases that have no email at all.
    """
    if email and email.strip():
        return f"email:{email.strip().lower()}"
    if user_id:
        return f"user:{user_id}"
    raise ValueError("A purchase owner needs a user id or an email")


class Purchase(Base):
    """Append-only entitlement record, one row per purchased product."""

    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    owner_key: Mapped[str] = mapped_column(String(300), nullable=False)
    product_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    product_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Minor currency units (cents); zero for fully discounted items.
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd", server_default="usd")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PURCHASE_STATUS_COMPLETED,
        server_default=PURCHASE_STATUS_COMPLETED,
    )
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "user_id IS NOT NULL OR customer_email IS NOT NULL",
            name="ck_purchases_owner_present",
        ),
        CheckConstraint("amount >= 0", name="ck_purchases_amount_non_negative"),
        Index(
            "ux_purchases_product_owner_entitled",
            "product_id",
            "owner_key",
            unique=True,
            sqlite_where=_ENTITLING_STATUS_CLAUSE,
            postgresql_where=_ENTITLING_STATUS_CLAUSE,
        ),
        Index("ix_purchases_product_status", "product_id", "status"),
    )
