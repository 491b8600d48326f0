"""Purchase-derived access checks.

A purchase belongs to an identity when either its user id or its email
matches, so a guest purchase shows up once the buyer signs in with the same
email. Store failures are raised as ``PersistenceError`` and never read as
"no access".
"""

from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.errors import PersistenceError
from storefront.models.purchase import ENTITLING_PURCHASE_STATUSES, Purchase
from storefront.models.user import User


@dataclass(frozen=True)
class AccessIdentity:
    user_id: str | None = None
    email: str | None = None

    @classmethod
    def for_user(cls, user: User | None, *, email: str | None = None) -> "AccessIdentity":
        resolved_email = email or (user.email if user else None)
        return cls(
            user_id=user.id if user else None,
            email=resolved_email.strip().lower() if resolved_email else None,
        )

    @property
    def is_empty(self) -> bool:
        return not self.user_id and not self.email


def _owner_clause(*, user_id: str | None, email: str | None):
    clauses = []
    if user_id:
        clauses.append(Purchase.user_id == user_id)
    if email:
        clauses.append(func.lower(Purchase.customer_email) == email.strip().lower())
    return or_(*clauses)


def find_entitling_purchase(
    db: Session,
    *,
    product_id: str,
    user_id: str | None,
    email: str | None,
) -> Purchase | None:
    if not user_id and not email:
        return None
    stmt = (
        select(Purchase)
        .where(
            Purchase.product_id == product_id,
            Purchase.status.in_(ENTITLING_PURCHASE_STATUSES),
            _owner_clause(user_id=user_id, email=email),
        )
        .order_by(Purchase.purchased_at.asc())
        .limit(1)
    )
    try:
        return db.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to query purchases") from exc


def has_access(db: Session, *, identity: AccessIdentity, product_id: str) -> bool:
    if identity.is_empty:
        return False
    purchase = find_entitling_purchase(
        db,
        product_id=product_id,
        user_id=identity.user_id,
        email=identity.email,
    )
    return purchase is not None


def list_entitled_purchases(
    db: Session,
    *,
    identity: AccessIdentity,
    limit: int,
    offset: int,
) -> tuple[list[Purchase], int]:
    if identity.is_empty:
        return [], 0
    filters = [
        Purchase.status.in_(ENTITLING_PURCHASE_STATUSES),
        _owner_clause(user_id=identity.user_id, email=identity.email),
    ]
    try:
        total = int(db.execute(select(func.count(Purchase.id)).where(*filters)).scalar_one())
        rows = db.execute(
            select(Purchase)
            .where(*filters)
            .order_by(Purchase.purchased_at.desc(), Purchase.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to query purchases") from exc
    return list(rows), total
