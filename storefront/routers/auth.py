from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.errors import (
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidTokenError,
    PasswordUnchangedError,
    TooManyAttemptsError,
)
from storefront.core.rate_limit import client_ip
from storefront.core.security import get_current_user
from storefront.models.user import User
from storefront.schemas.auth import (
    ChangePasswordIn,
    LoginIn,
    LogoutIn,
    RefreshIn,
    RegisterIn,
    TokenOut,
    UpdateProfileIn,
    UserProfileOut,
)
from storefront.schemas.common import OkOut
from storefront.services import auth_service
from storefront.services.auth_service import TokenPair

router = APIRouter(prefix="/auth", tags=["auth"])

_LOGIN_ERRORS = (InvalidCredentialsError, TooManyAttemptsError)


def _token_out(tokens: TokenPair) -> TokenOut:
    return TokenOut(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


def _profile_out(user: User) -> UserProfileOut:
    return UserProfileOut(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.post(
    "/register",
    response_model=TokenOut,
    summary="Register a customer account",
    description=(
        "Creates an account and returns access + refresh tokens. Earlier guest purchases "
        "made with the same email become visible to the new account."
    ),
    responses=error_responses(422, 500, domain_errors=(EmailAlreadyRegisteredError,)),
)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_db)):
    tokens = auth_service.register_account(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        client_ip=client_ip(request),
    )
    return _token_out(tokens)


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    description="Authenticate with email and password. Repeated failures lock the email for a while.",
    responses=error_responses(422, 500, domain_errors=_LOGIN_ERRORS),
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    tokens = auth_service.authenticate(
        db,
        email=payload.email,
        password=payload.password,
        client_ip=client_ip(request),
    )
    return _token_out(tokens)


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login used by Swagger Authorize. Put your email in the `username` field.",
    responses=error_responses(422, 500, domain_errors=_LOGIN_ERRORS),
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    tokens = auth_service.authenticate(
        db,
        email=form_data.username,
        password=form_data.password,
        client_ip=client_ip(request),
    )
    return _token_out(tokens)


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses=error_responses(401, 500, domain_errors=(InvalidTokenError,)),
)
def get_my_profile(user: User = Depends(get_current_user)):
    return _profile_out(user)


@router.patch(
    "/me",
    response_model=UserProfileOut,
    summary="Update current user profile",
    responses=error_responses(401, 422, 500, domain_errors=(InvalidTokenError,)),
)
def update_my_profile(
    payload: UpdateProfileIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.full_name is not None:
        user.full_name = payload.full_name
    db.commit()
    db.refresh(user)
    return _profile_out(user)


@router.post(
    "/refresh",
    response_model=TokenOut,
    summary="Refresh access token",
    description="Exchanges a valid refresh token for a fresh token pair. The old refresh token stops working.",
    responses=error_responses(422, 500, domain_errors=(InvalidTokenError,)),
)
def refresh_tokens(payload: RefreshIn, request: Request, db: Session = Depends(get_db)):
    tokens = auth_service.rotate_refresh_token(
        db,
        refresh_token=payload.refresh_token,
        client_ip=client_ip(request),
    )
    return _token_out(tokens)


@router.post(
    "/logout",
    response_model=OkOut,
    summary="Logout (revoke refresh token)",
    responses=error_responses(422, 500),
)
def logout(payload: LogoutIn, db: Session = Depends(get_db)):
    auth_service.revoke_refresh_token(db, refresh_token=payload.refresh_token)
    return OkOut()


@router.post(
    "/change-password",
    response_model=OkOut,
    summary="Change password",
    description="Changes the password and signs out every other session.",
    responses=error_responses(
        401,
        422,
        500,
        domain_errors=(InvalidCredentialsError, PasswordUnchangedError, InvalidTokenError),
    ),
)
def change_password(
    payload: ChangePasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    auth_service.change_password(
        db,
        user=user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return OkOut()
