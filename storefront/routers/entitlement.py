from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.errors import InvalidTokenError, PersistenceError
from storefront.core.security import get_optional_user
from storefront.models.user import User
from storefront.schemas.entitlement import EntitlementCheckIn, EntitlementCheckOut
from storefront.services.entitlement_service import AccessIdentity, has_access

router = APIRouter(prefix="/entitlement", tags=["entitlement"])


@router.post(
    "/check",
    response_model=EntitlementCheckOut,
    summary="Check access to a purchased product",
    description=(
        "Matches completed purchases by account id or by email, so guest purchases count "
        "once the buyer signs in with the same email."
    ),
    responses=error_responses(401, 422, 500, domain_errors=(InvalidTokenError, PersistenceError)),
)
def check_entitlement(
    payload: EntitlementCheckIn,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    identity = AccessIdentity.for_user(user) if user else AccessIdentity.for_user(None, email=payload.email)
    return EntitlementCheckOut(
        product_id=payload.product_id,
        has_access=has_access(db, identity=identity, product_id=payload.product_id),
    )
