class StorefrontError(Exception):
    """Base for errors rendered into the API error envelope."""

    status_code: int = 400
    code: str = "bad_request"
    headers: dict[str, str] | None = None

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class EmptyCartError(StorefrontError):
    code = "empty_cart"


class MissingIdentityError(StorefrontError):
    code = "missing_identity"


class InvalidDiscountCodeError(StorefrontError):
    code = "invalid_discount_code"


class DiscountApplicationFailedError(StorefrontError):
    status_code = 502
    code = "discount_application_failed"


class PaymentNotCompletedError(StorefrontError):
    code = "payment_not_completed"

    def __init__(self, message: str, *, payment_status: str | None = None):
        super().__init__(
            message,
            details=[{"payment_status": payment_status}] if payment_status else None,
        )
        self.payment_status = payment_status


class UnresolvedIdentityError(StorefrontError):
    code = "unresolved_identity"


class PaymentsUnavailableError(StorefrontError):
    status_code = 503
    code = "payments_unavailable"


class GatewayUnavailableError(StorefrontError):
    status_code = 502
    code = "gateway_unavailable"


class GatewaySessionNotFoundError(StorefrontError):
    status_code = 404
    code = "checkout_session_not_found"


class GatewayPayloadError(StorefrontError):
    status_code = 502
    code = "invalid_gateway_payload"


class WebhookSignatureError(StorefrontError):
    status_code = 401
    code = "unauthorized"


class PersistenceError(StorefrontError):
    status_code = 503
    code = "store_unavailable"


class UniqueConstraintViolation(PersistenceError):
    status_code = 409
    code = "conflict"


class InvalidWebhookPayloadError(StorefrontError):
    code = "invalid_webhook_payload"


class InvalidCredentialsError(StorefrontError):
    status_code = 401
    code = "invalid_credentials"


class InvalidTokenError(StorefrontError):
    status_code = 401
    code = "invalid_token"


class EmailAlreadyRegisteredError(StorefrontError):
    status_code = 409
    code = "email_already_registered"


class PasswordUnchangedError(StorefrontError):
    code = "password_unchanged"


class TooManyAttemptsError(StorefrontError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = {"Retry-After": str(retry_after)}
