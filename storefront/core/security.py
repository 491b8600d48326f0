"""Password hashing, JWT issuance and the bearer-token dependencies.

Access and refresh tokens share one signing key and are told apart by the
``type`` claim. Refresh tokens also carry a ``jti`` that is persisted in
``refresh_tokens`` so they can be rotated and revoked.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal
from uuid import uuid4

import bcrypt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.deps import get_db
from storefront.core.errors import InvalidTokenError
from storefront.models.user import User

ALGORITHM = "HS256"
TOKEN_URL = "/auth/token"

TokenType = Literal["access", "refresh"]

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=TOKEN_URL)
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl=TOKEN_URL, auto_error=False)


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    token_type: str
    jti: str
    expires_at: datetime


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes.
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _lifetime(token_type: TokenType) -> timedelta:
    if token_type == "refresh":
        return timedelta(days=settings.refresh_token_expire_days)
    return timedelta(minutes=settings.access_token_expire_minutes)


def issue_token(user_id: str, token_type: TokenType) -> tuple[str, TokenClaims]:
    issued_at = datetime.now(timezone.utc)
    claims = TokenClaims(
        subject=user_id,
        token_type=token_type,
        jti=str(uuid4()),
        expires_at=issued_at + _lifetime(token_type),
    )
    token = jwt.encode(
        {
            "sub": claims.subject,
            "type": claims.token_type,
            "jti": claims.jti,
            "iat": int(issued_at.timestamp()),
            "exp": int(claims.expires_at.timestamp()),
        },
        settings.secret_key,
        algorithm=ALGORITHM,
    )
    return token, claims


def read_token(token: str, *, expected_type: TokenType) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError("Invalid or expired token") from exc

    missing = [claim for claim in ("sub", "jti", "exp") if not payload.get(claim)]
    if missing:
        raise InvalidTokenError(f"Token is missing claims: {', '.join(missing)}")
    if payload.get("type") != expected_type:
        raise InvalidTokenError(f"Expected a {expected_type} token")

    return TokenClaims(
        subject=str(payload["sub"]),
        token_type=expected_type,
        jti=str(payload["jti"]),
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
    )


def _user_for_access_token(db: Session, token: str) -> User:
    claims = read_token(token, expected_type="access")
    user = db.get(User, claims.subject)
    if user is None or not user.is_active:
        raise InvalidTokenError("Account not found or disabled")
    return user


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    return _user_for_access_token(db, token)


def get_optional_user(
    token: str | None = Depends(optional_oauth2_scheme),
    db: Session = Depends(get_db),
) -> User | None:
    """Guest-friendly variant: no token means a guest, a bad token is still a 401."""
    if not token:
        return None
    return _user_for_access_token(db, token)
