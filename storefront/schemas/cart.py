from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CartItemIn(BaseModel):
    product_id: str = Field(min_length=1, max_length=120)
    title: str = Field(min_length=1, max_length=255)
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1, le=100)
    category: Optional[str] = Field(default=None, max_length=80)
    image_url: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "viral-clip-pack-bundle",
                "title": "Viral Clip Pack Bundle",
                "unit_price": 14.99,
                "quantity": 1,
                "category": "Digital Product",
                "image_url": "/images/viral-clip-pack.png",
            }
        }
    )


class CartItemQuantityIn(BaseModel):
    quantity: int = Field(ge=1, le=100)


class CartItemOut(BaseModel):
    product_id: str
    title: str
    unit_price: float
    quantity: int
    line_total: float
    category: str | None = None
    image_url: str | None = None


class CartOut(BaseModel):
    items: list[CartItemOut]
    item_count: int
    subtotal: float
