from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.errors import InvalidTokenError, PersistenceError
from storefront.core.money import to_money
from storefront.core.security import get_current_user
from storefront.models.cart import CartItem
from storefront.models.user import User
from storefront.schemas.cart import CartItemIn, CartItemOut, CartItemQuantityIn, CartOut
from storefront.services.cart_service import (
    CartLineIn,
    add_cart_item,
    cart_subtotal,
    clear_cart,
    list_cart_items,
    remove_cart_item,
    set_cart_item_quantity,
)

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_item_out(item: CartItem) -> CartItemOut:
    unit_price = to_money(item.unit_price)
    return CartItemOut(
        product_id=item.product_id,
        title=item.title,
        unit_price=float(unit_price),
        quantity=item.quantity,
        line_total=float(to_money(unit_price * item.quantity)),
        category=item.category,
        image_url=item.image_url,
    )


def _cart_out(db: Session, user_id: str) -> CartOut:
    items = list_cart_items(db, user_id=user_id)
    return CartOut(
        items=[_cart_item_out(item) for item in items],
        item_count=sum(item.quantity for item in items),
        subtotal=float(cart_subtotal(items)),
    )


@router.get(
    "",
    response_model=CartOut,
    summary="Get the current user's cart",
    responses=error_responses(401, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def get_cart(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _cart_out(db, user.id)


@router.post(
    "/items",
    response_model=CartOut,
    summary="Add a product to the cart",
    description="Adding a product that is already in the cart increases its quantity.",
    responses=error_responses(401, 422, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def add_item(
    payload: CartItemIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    add_cart_item(
        db,
        user_id=user.id,
        line=CartLineIn(
            product_id=payload.product_id.strip(),
            title=payload.title.strip(),
            unit_price=payload.unit_price,
            quantity=payload.quantity,
            category=payload.category,
            image_url=payload.image_url,
        ),
    )
    return _cart_out(db, user.id)


@router.patch(
    "/items/{product_id}",
    response_model=CartOut,
    summary="Set the quantity of a cart line",
    responses=error_responses(401, 404, 422, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def update_item_quantity(
    product_id: str,
    payload: CartItemQuantityIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    updated = set_cart_item_quantity(db, user_id=user.id, product_id=product_id, quantity=payload.quantity)
    if updated is None:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return _cart_out(db, user.id)


@router.delete(
    "/items/{product_id}",
    response_model=CartOut,
    summary="Remove a product from the cart",
    responses=error_responses(401, 404, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def delete_item(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not remove_cart_item(db, user_id=user.id, product_id=product_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    return _cart_out(db, user.id)


@router.delete(
    "",
    response_model=CartOut,
    summary="Clear the cart",
    responses=error_responses(401, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def delete_cart(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    clear_cart(db, user_id=user.id)
    return _cart_out(db, user.id)
