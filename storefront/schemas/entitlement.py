from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class EntitlementCheckIn(BaseModel):
    product_id: str = Field(min_length=1, max_length=120)
    # Used only for anonymous callers; a bearer token always takes precedence.
    email: Optional[EmailStr] = None


class EntitlementCheckOut(BaseModel):
    product_id: str
    has_access: bool
