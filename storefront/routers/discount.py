from fastapi import APIRouter, Request

from storefront.core.api_docs import error_responses
from storefront.core.config import settings
from storefront.core.errors import TooManyAttemptsError
from storefront.core.rate_limit import SlidingWindowRateLimiter
from storefront.schemas.discount import DiscountValidateIn, DiscountValidateOut
from storefront.services.discount_service import evaluate_discount

router = APIRouter(prefix="/discount", tags=["discount"])

discount_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.discount_rate_limit_requests,
    window_seconds=settings.discount_rate_limit_window_seconds,
)


@router.post(
    "/validate",
    response_model=DiscountValidateOut,
    summary="Validate a discount code",
    description="Unknown codes return `valid: false` with a zero discount rather than an error.",
    responses=error_responses(422, 500, domain_errors=(TooManyAttemptsError,)),
)
def validate_discount(payload: DiscountValidateIn, request: Request):
    discount_rate_limiter.enforce(request, detail="Too many discount attempts. Try again later.")
    evaluation = evaluate_discount(payload.code, payload.subtotal)
    return DiscountValidateOut(
        valid=evaluation.valid,
        code=evaluation.code,
        discount_amount=float(evaluation.discount_amount),
        description=evaluation.description,
        message=None if evaluation.valid else "Invalid discount code",
    )
