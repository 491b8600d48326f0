from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.core.config import settings
from storefront.core.errors import StorefrontError
from storefront.core.observability import (
    REQUEST_ID_HEADER,
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    storefront_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from storefront.db.session import database_reachable
from storefront.routers import account, auth, cart, checkout, courses, discount, entitlement
from storefront.schemas.common import HealthOut, ReadinessOut

app = FastAPI(
    title=settings.app_name,
    version="0.3.0",
    description=(
        "Backend API for the digital storefront: cart, hosted checkout, purchase "
        "reconciliation and purchase-gated content.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /auth/register` or `POST /auth/login`.\n"
        "2. Click **Authorize** and use your email + password "
        "(OAuth token URL: `/auth/token`).\n"
        "3. Test `POST /checkout/create`, then `GET /checkout/verify` with the returned session id."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Customer accounts and token lifecycle."},
        {"name": "cart", "description": "Server-side cart for signed-in customers."},
        {"name": "checkout", "description": "Hosted checkout, payment verification and payment webhooks."},
        {"name": "discount", "description": "Discount code validation."},
        {"name": "entitlement", "description": "Purchase-based access checks."},
        {"name": "courses", "description": "Purchase-gated course lessons and progress."},
        {"name": "account", "description": "Purchased products and access links."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StorefrontError, storefront_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

_LOCAL_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def _cors_options() -> dict[str, object]:
    origins = settings.cors_origins or [settings.public_base_url]
    allow_all = "*" in origins
    origin_regex = settings.cors_origin_regex
    if not origin_regex and settings.env.lower().strip() in {"dev", "development", "staging", "stage"}:
        # The storefront frontend runs on arbitrary localhost ports during development.
        origin_regex = _LOCAL_ORIGIN_REGEX
    return {
        "allow_origins": ["*"] if allow_all else origins,
        "allow_origin_regex": origin_regex,
        "allow_credentials": not allow_all,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
        "expose_headers": [REQUEST_ID_HEADER, "Retry-After"],
    }


app.add_middleware(CORSMiddleware, **_cors_options())

for module in (auth, cart, checkout, discount, entitlement, courses, account):
    app.include_router(module.router)
app.include_router(checkout.webhooks_router)


def _payments_configured() -> bool:
    if settings.payment_provider_default == "stripe":
        return bool(settings.stripe_secret_key)
    return True


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"], response_model=HealthOut)
def health():
    return HealthOut(ok=True)


@app.get(
    "/ready",
    tags=["health"],
    response_model=ReadinessOut,
    responses={503: {"model": ReadinessOut, "description": "Database unreachable"}},
)
def ready():
    database = database_reachable()
    readiness = ReadinessOut(
        ok=database,
        database=database,
        payments_configured=_payments_configured(),
    )
    if not database:
        return JSONResponse(status_code=503, content=readiness.model_dump())
    return readiness
