from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PurchaseLineStatus = Literal["saved", "already_exists", "error"]


class CheckoutLineIn(BaseModel):
    id: str = Field(min_length=1, max_length=120, description="Product id")
    title: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1, le=100)
    category: Optional[str] = Field(default=None, max_length=80)
    image: Optional[str] = Field(default=None, max_length=500)

    @field_validator("id", "title")
    @classmethod
    def strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("must not be blank")
        return cleaned


class CheckoutCreateIn(BaseModel):
    # An empty list is rejected by the checkout builder, not by validation.
    items: list[CheckoutLineIn] = Field(default_factory=list)
    customer_email: Optional[EmailStr] = None
    discount_code: Optional[str] = Field(default=None, max_length=64)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [
                    {
                        "id": "champions-mindset",
                        "title": "Champion's Mindset",
                        "price": 9.99,
                        "quantity": 1,
                        "category": "E-book",
                        "image": "/images/champion-mindset-product.png",
                    }
                ],
                "customer_email": "buyer@example.com",
                "discount_code": None,
            }
        }
    )


class CheckoutCreateOut(BaseModel):
    session_id: str
    redirect_url: str | None = None
    original_total: float
    discount_amount: float
    total_amount: float
    currency: str
    discount_code: str | None = None


class PurchaseLineResultOut(BaseModel):
    product_id: str | None = None
    title: str
    status: PurchaseLineStatus
    amount: int | None = Field(default=None, description="Minor currency units")
    purchase_id: str | None = None
    error: str | None = None


class PurchasedItemOut(BaseModel):
    id: str | None = None
    title: str
    quantity: int
    amount: int | None = None


class CheckoutSessionSummaryOut(BaseModel):
    id: str
    payment_status: str
    amount_total: int | None = None
    currency: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    line_items: list[PurchasedItemOut]


class CheckoutVerifyOut(BaseModel):
    session: CheckoutSessionSummaryOut
    purchases_saved: bool
    purchase_results: list[PurchaseLineResultOut]
    cart_cleared: bool
    confirmation_email_queued: bool
    line_source: Literal["mirror", "gateway"]


class PaymentWebhookOut(BaseModel):
    ok: bool = True
    provider: str
    event_id: str
    event_type: str
    checkout_session_id: str | None = None
    duplicate: bool = False
    processed: bool = False
    purchases_saved: bool | None = None
    detail: str | None = None
