"""OpenAPI ``responses`` entries for the shared error envelope."""

from collections import defaultdict

from storefront.core.errors import StorefrontError
from storefront.schemas.common import ErrorOut

# Codes produced by the framework-level handlers rather than by domain errors.
_HANDLER_CODES: dict[int, tuple[str, str]] = {
    401: ("unauthorized", "Not authenticated"),
    403: ("forbidden", "Forbidden"),
    404: ("not_found", "Resource not found"),
    422: ("validation_error", "Validation failed"),
    500: ("internal_error", "Internal server error"),
}


def _envelope_example(code: str, message: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
            "path": "/example",
            "details": None,
        }
    }


def error_responses(
    *status_codes: int,
    domain_errors: tuple[type[StorefrontError], ...] = (),
) -> dict[int, dict]:
    """Documents each status with the error codes an endpoint can return for it.

    Statuses come from ``status_codes`` plus each ``domain_errors`` class's
    ``status_code``; the description lists every code seen for that status.
    """
    codes: dict[int, list[str]] = defaultdict(list)
    for status_code in status_codes:
        if status_code in _HANDLER_CODES:
            codes[status_code].append(_HANDLER_CODES[status_code][0])
        else:
            codes.setdefault(status_code, [])
    for error in domain_errors:
        if error.code not in codes[error.status_code]:
            codes[error.status_code].append(error.code)

    responses: dict[int, dict] = {}
    for status_code in sorted(codes):
        status_codes_seen = codes[status_code] or ["http_error"]
        message = _HANDLER_CODES.get(status_code, ("", "Request failed"))[1]
        responses[status_code] = {
            "model": ErrorOut,
            "description": "Error codes: " + ", ".join(f"`{code}`" for code in status_codes_seen),
            "content": {
                "application/json": {"example": _envelope_example(status_codes_seen[0], message)}
            },
        }
    return responses
