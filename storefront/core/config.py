import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_WEAK_SECRETS = {
    "",
    "change_me",
    "change_me_please_to_a_long_random_string",
    "dev-secret-key-change-before-prod",
}


class Settings(BaseSettings):
    app_name: str = "Storefront Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 14

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # PAYMENTS
    payment_provider_default: str = "stripe"
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    payment_webhook_secret: str = "dev-webhook-secret"
    payment_gateway_timeout_seconds: int = Field(default=15, ge=1, le=120)
    payment_currency: str = Field(default="usd", min_length=3, max_length=3)
    checkout_session_expiry_minutes: int = Field(default=30, ge=30, le=1440)

    # PUBLIC LINKS
    public_base_url: str = "http://localhost:3000"
    support_email: str = "support@example.com"

    # AUTH HARDENING
    auth_rate_limit_max_attempts: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)
    auth_rate_limit_lock_seconds: int = Field(default=900, ge=1)
    discount_rate_limit_requests: int = Field(default=30, ge=1)
    discount_rate_limit_window_seconds: int = Field(default=60, ge=1)

    # NOTIFICATIONS
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender_email: str | None = None
    smtp_reply_to_email: str | None = None
    smtp_use_starttls: bool = True
    smtp_use_ssl: bool = False
    api_timeout_hint_ms: int = Field(default=30000, ge=1000, le=1_800_000)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: Union[str, List[str], None]) -> List[str]:
        """Accepts a JSON list or a comma-separated string."""
        if value is None:
            return []
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                value = json.loads(raw)
                if not isinstance(value, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
            else:
                value = raw.split(",")
        return [str(origin).strip() for origin in value if str(origin).strip()]

    @field_validator(
        "stripe_secret_key",
        "stripe_webhook_secret",
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_sender_email",
        "smtp_reply_to_email",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return str(value).strip() or None

    @field_validator("payment_provider_default", "payment_currency")
    @classmethod
    def normalize_lowercase(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("public_base_url")
    @classmethod
    def normalize_public_base_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("PUBLIC_BASE_URL must be an absolute http(s) URL")
        return cleaned

    @property
    def is_production(self) -> bool:
        return self.env.lower().strip() in {"prod", "production"}

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if not self.is_production:
            return self

        problems: list[str] = []
        if self.secret_key.strip() in _WEAK_SECRETS or len(self.secret_key.strip()) < 32:
            problems.append("SECRET_KEY must be a strong random value")
        if "*" in self.cors_origins or self.cors_origin_regex:
            problems.append("CORS must list explicit origins")
        if self.payment_provider_default == "stub":
            problems.append("PAYMENT_PROVIDER_DEFAULT cannot be 'stub'")
        if self.payment_provider_default == "stripe" and not self.stripe_webhook_secret:
            problems.append("STRIPE_WEBHOOK_SECRET is required for Stripe webhooks")
        if self.payment_webhook_secret == "dev-webhook-secret":
            problems.append("PAYMENT_WEBHOOK_SECRET must be changed")
        if not self.public_base_url.startswith("https://"):
            problems.append("PUBLIC_BASE_URL must use https")
        if self.smtp_use_ssl and self.smtp_use_starttls:
            problems.append("set only one of SMTP_USE_SSL or SMTP_USE_STARTTLS")
        if problems:
            raise ValueError("Unsafe production settings: " + "; ".join(problems))
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
