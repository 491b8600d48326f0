from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _normalize_login_email(value: str) -> str:
    cleaned = value.strip().lower()
    if not cleaned:
        raise ValueError("email is required")
    return cleaned


# bcrypt ignores everything past 72 bytes, so longer passwords are refused outright.
Password = Annotated[str, Field(min_length=8, max_length=72)]
DisplayName = Annotated[Optional[str], Field(default=None, max_length=100), AfterValidator(_blank_to_none)]
LoginEmail = Annotated[str, AfterValidator(_normalize_login_email)]


class RegisterIn(BaseModel):
    email: EmailStr
    password: Password
    full_name: DisplayName = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "buyer@example.com",
                "password": "password123",
                "full_name": "Jane Buyer",
            }
        }
    )


class LoginIn(BaseModel):
    email: LoginEmail
    password: str

    model_config = ConfigDict(
        json_schema_extra={"example": {"email": "buyer@example.com", "password": "password123"}}
    )


class RefreshIn(BaseModel):
    refresh_token: str


class LogoutIn(BaseModel):
    refresh_token: str


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserProfileOut(BaseModel):
    id: str
    email: str
    full_name: str | None = None
    created_at: datetime
    updated_at: datetime


class UpdateProfileIn(BaseModel):
    full_name: DisplayName = None


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: Password
