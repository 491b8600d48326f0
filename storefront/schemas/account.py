from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from storefront.schemas.common import PaginationMeta


class AccountPurchaseOut(BaseModel):
    id: str
    product_id: str
    product_title: str | None = None
    amount: int
    currency: str
    status: str
    checkout_session_id: str | None = None
    purchased_at: datetime
    access_kind: Literal["course", "download"]
    access_url: str


class AccountPurchaseListOut(BaseModel):
    items: list[AccountPurchaseOut]
    pagination: PaginationMeta
