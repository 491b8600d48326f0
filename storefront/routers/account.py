from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.catalog import product_access_kind, product_access_url
from storefront.core.deps import get_db
from storefront.core.errors import InvalidTokenError, PersistenceError
from storefront.core.security import get_current_user
from storefront.models.user import User
from storefront.schemas.account import AccountPurchaseListOut, AccountPurchaseOut
from storefront.schemas.common import PaginationMeta
from storefront.services.entitlement_service import AccessIdentity, list_entitled_purchases

router = APIRouter(prefix="/account", tags=["account"])


@router.get(
    "/purchases",
    response_model=AccountPurchaseListOut,
    summary="List purchased products",
    description="Includes guest purchases made with the account's email.",
    responses=error_responses(401, 422, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def list_my_purchases(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows, total = list_entitled_purchases(
        db,
        identity=AccessIdentity.for_user(user),
        limit=limit,
        offset=offset,
    )
    return AccountPurchaseListOut(
        items=[
            AccountPurchaseOut(
                id=row.id,
                product_id=row.product_id,
                product_title=row.product_title,
                amount=row.amount,
                currency=row.currency,
                status=row.status,
                checkout_session_id=row.checkout_session_id,
                purchased_at=row.purchased_at,
                access_kind=product_access_kind(row.product_id),
                access_url=product_access_url(row.product_id),
            )
            for row in rows
        ],
        pagination=PaginationMeta.for_page(total=total, limit=limit, offset=offset, count=len(rows)),
    )
