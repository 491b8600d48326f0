from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.errors import PersistenceError
from storefront.core.id_utils import generate_row_id
from storefront.core.money import ZERO_MONEY, to_money
from storefront.db.store import RecordStore
from storefront.models.cart import CartItem


@dataclass(frozen=True)
class CartLineIn:
    product_id: str
    title: str
    unit_price: Decimal
    quantity: int = 1
    category: str | None = None
    image_url: str | None = None


def list_cart_items(db: Session, *, user_id: str) -> list[CartItem]:
    try:
        return list(
            db.execute(
                select(CartItem)
                .where(CartItem.user_id == user_id)
                .order_by(CartItem.created_at.asc(), CartItem.id.asc())
            ).scalars().all()
        )
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to read cart") from exc


def get_cart_item(db: Session, *, user_id: str, product_id: str) -> CartItem | None:
    try:
        return db.execute(
            select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise PersistenceError("Failed to read cart") from exc


def add_cart_item(db: Session, *, user_id: str, line: CartLineIn) -> CartItem:
    """Adds a product, or bumps the quantity when it is already in the cart."""
    store = RecordStore(db, CartItem)
    existing = get_cart_item(db, user_id=user_id, product_id=line.product_id)
    if existing:
        return store.update(existing.id, quantity=existing.quantity + line.quantity)

    return store.insert(
        CartItem(
            id=generate_row_id(),
            user_id=user_id,
            product_id=line.product_id,
            title=line.title,
            unit_price=to_money(line.unit_price),
            quantity=line.quantity,
            category=line.category,
            image_url=line.image_url,
        )
    )


def set_cart_item_quantity(db: Session, *, user_id: str, product_id: str, quantity: int) -> CartItem | None:
    existing = get_cart_item(db, user_id=user_id, product_id=product_id)
    if existing is None:
        return None
    return RecordStore(db, CartItem).update(existing.id, quantity=quantity)


def remove_cart_item(db: Session, *, user_id: str, product_id: str) -> bool:
    removed = RecordStore(db, CartItem).delete_where(
        CartItem.user_id == user_id,
        CartItem.product_id == product_id,
    )
    return removed > 0


def clear_cart(db: Session, *, user_id: str) -> int:
    return RecordStore(db, CartItem).delete_where(CartItem.user_id == user_id)


def clear_purchased_items(db: Session, *, user_id: str, product_ids: list[str]) -> int:
    if not product_ids:
        return 0
    return RecordStore(db, CartItem).delete_where(
        CartItem.user_id == user_id,
        CartItem.product_id.in_(product_ids),
    )


def cart_subtotal(items: list[CartItem]) -> Decimal:
    total = ZERO_MONEY
    for item in items:
        total += to_money(item.unit_price) * item.quantity
    return to_money(total)
