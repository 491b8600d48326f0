from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class DiscountValidateIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    subtotal: Decimal = Field(ge=0)

    model_config = ConfigDict(
        json_schema_extra={"example": {"code": "DISCOUNT100", "subtotal": 19.99}}
    )


class DiscountValidateOut(BaseModel):
    valid: bool
    code: str
    discount_amount: float
    description: str | None = None
    message: str | None = None
