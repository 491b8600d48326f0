"""Customer accounts: registration, login, refresh-token rotation and revocation."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidTokenError,
    PasswordUnchangedError,
)
from storefront.core.id_utils import generate_row_id
from storefront.core.observability import log_event
from storefront.core.rate_limit import LoginRateLimiter
from storefront.core.security import hash_password, issue_token, read_token, verify_password
from storefront.models.user import RefreshToken, User
from storefront.services.entitlement_service import AccessIdentity, list_entitled_purchases

login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_jti: str


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _find_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


def _issue_token_pair(db: Session, *, user_id: str, client_ip: str | None) -> TokenPair:
    """Adds the refresh-token row to the session; the caller commits."""
    access_token, _ = issue_token(user_id, "access")
    refresh_token, refresh_claims = issue_token(user_id, "refresh")
    db.add(
        RefreshToken(
            id=generate_row_id(),
            user_id=user_id,
            token_jti=refresh_claims.jti,
            expires_at=refresh_claims.expires_at,
            created_by_ip=client_ip,
        )
    )
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        refresh_jti=refresh_claims.jti,
    )


def register_account(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str | None,
    client_ip: str | None,
) -> TokenPair:
    normalized_email = email.strip().lower()
    if _find_user_by_email(db, normalized_email) is not None:
        raise EmailAlreadyRegisteredError("Email already registered")

    user = User(
        email=normalized_email,
        full_name=full_name,
        hashed_password=hash_password(password),
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise EmailAlreadyRegisteredError("Email already registered") from exc

    tokens = _issue_token_pair(db, user_id=user.id, client_ip=client_ip)
    db.commit()

    # Guest purchases made with this email are entitled to the new account.
    _, guest_purchases = list_entitled_purchases(
        db,
        identity=AccessIdentity(email=normalized_email),
        limit=1,
        offset=0,
    )
    log_event("account_registered", user_id=user.id, guest_purchases=guest_purchases)
    return tokens


def authenticate(db: Session, *, email: str, password: str, client_ip: str) -> TokenPair:
    key = f"{email.strip().lower()}:{client_ip}"
    login_rate_limiter.enforce(key, detail="Too many failed attempts. Try again later.")

    user = _find_user_by_email(db, email)
    if user is None or not user.is_active or not verify_password(password, user.hashed_password):
        login_rate_limiter.register_failure(key)
        log_event("login_failed", level=logging.WARNING, client_ip=client_ip)
        raise InvalidCredentialsError("Invalid credentials")

    login_rate_limiter.register_success(key)
    tokens = _issue_token_pair(db, user_id=user.id, client_ip=client_ip)
    db.commit()
    return tokens


def rotate_refresh_token(db: Session, *, refresh_token: str, client_ip: str | None) -> TokenPair:
    claims = read_token(refresh_token, expected_type="refresh")
    now = datetime.now(timezone.utc)
    row = db.execute(
        select(RefreshToken).where(
            RefreshToken.token_jti == claims.jti,
            RefreshToken.user_id == claims.subject,
        )
    ).scalar_one_or_none()
    if row is None or row.revoked_at is not None or _as_utc(row.expires_at) <= now:
        log_event(
            "refresh_token_rejected",
            level=logging.WARNING,
            user_id=claims.subject,
            reused=bool(row is not None and row.revoked_at is not None),
        )
        raise InvalidTokenError("Refresh token is invalid or expired")

    row.revoked_at = now
    tokens = _issue_token_pair(db, user_id=claims.subject, client_ip=client_ip)
    row.replaced_by_jti = tokens.refresh_jti
    db.commit()
    return tokens


def revoke_refresh_token(db: Session, *, refresh_token: str) -> None:
    """Logout. An unreadable token has nothing to revoke."""
    try:
        claims = read_token(refresh_token, expected_type="refresh")
    except InvalidTokenError:
        return
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.token_jti == claims.jti, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc))
    )
    db.commit()


def change_password(db: Session, *, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise InvalidCredentialsError("Current password is incorrect")
    if current_password == new_password:
        raise PasswordUnchangedError("New password must be different")

    user.hashed_password = hash_password(new_password)
    # Every signed-in device has to log in again.
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=datetime.now(timezone.utc))
    )
    db.commit()
    log_event("password_changed", user_id=user.id)
