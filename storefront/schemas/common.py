from typing import Any

from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    @classmethod
    def for_page(cls, *, total: int, limit: int, offset: int, count: int) -> "PaginationMeta":
        return cls(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=offset + count < total,
        )


class OkOut(BaseModel):
    ok: bool = True


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    # Validation errors carry {field, message, type}; domain errors may carry their own keys.
    details: list[dict[str, Any]] | None = None


class ErrorOut(BaseModel):
    """Envelope returned for every non-2xx response."""

    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "payment_not_completed",
                    "message": "Payment not completed",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/checkout/verify",
                    "details": [{"payment_status": "unpaid"}],
                }
            }
        }
    )


class HealthOut(BaseModel):
    ok: bool


class ReadinessOut(BaseModel):
    ok: bool
    database: bool
    payments_configured: bool
