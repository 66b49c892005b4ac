# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Password authentication API routes."""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.api.schemas import (
    CheckEmailRequest,
    CheckEmailResponse,
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    RegisteredUser,
    RegisterRequest,
    RegisterResponse,
    UserResponse,
    json_response,
)
from sharesphere_server.auth import NotAuthenticated, UserContext, get_current_user, hash_password
from sharesphere_server.database import get_db
from sharesphere_server.errors import AccountExistsError, UsernameExhaustedError
from sharesphere_server.models import AuthStrategy
from sharesphere_server.services import verification
from sharesphere_server.services.identity import Outcome, authenticate_password
from sharesphere_server.services.issuer import (
    clear_session_cookie,
    end_session,
    issue_login,
    set_session_cookie,
)
from sharesphere_server.services.users import (
    find_user_by_email,
    generate_unique_username,
    get_user,
    insert_user,
    insert_user_stats,
    normalize_email,
    validate_email_format,
)
from sharesphere_server.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

MIN_PASSWORD_LENGTH = 6
EMAIL_NOT_VERIFIED = "email not verified"


def _register_failed(message: str) -> JSONResponse:
    return json_response(
        RegisterResponse(register_success=False, message=message),
        status_code=status.HTTP_400_BAD_REQUEST,
        exclude_none=True,
    )


def _validate_registration(data: RegisterRequest) -> str:
    """Return the normalized email or raise ValueError."""
    if not data.display_name.strip():
        raise ValueError("Please enter a valid name")
    email = validate_email_format(data.email)
    if len(data.password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if data.password != data.confirm_password:
        raise ValueError("Passwords do not match")
    return email


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=RegisterResponse)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a password account. The user must verify their email before logging in."""
    try:
        email = _validate_registration(data)
    except ValueError as e:
        return _register_failed(str(e))

    if await find_user_by_email(db, email):
        return _register_failed(str(AccountExistsError()))
    display_name = data.display_name.strip()
    try:
        username = await generate_unique_username(db, display_name)
        user = await insert_user(
            db,
            username=username,
            display_name=display_name,
            email=email,
            password_hash=hash_password(data.password),
            auth_strategy=AuthStrategy.CREDENTIALS.value,
            email_verified=False,
        )
    except AccountExistsError as e:
        return _register_failed(str(e))
    except UsernameExhaustedError:
        logger.warning("Username generation exhausted for %r", display_name)
        return _register_failed("User registration failed. Please try again.")
    await insert_user_stats(db, user.id)
    logger.info("Registered user %s (%s)", user.id, user.username)

    # Account and token are committed first; a failed send leaves a resumable account
    await verification.send_verification(db, user)

    return RegisterResponse(
        register_success=True,
        message="Registration successful! Please check your email to verify your account.",
        email_verification_required=True,
        user=RegisteredUser(email=user.email, display_name=user.display_name),
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
) -> LoginResponse:
    """Password login. Failures are reported in the body, not by status code."""
    result = await authenticate_password(db, normalize_email(data.email) or "", data.password)

    if result.outcome == Outcome.REJECTED:
        return LoginResponse(auth_success=False, message=result.reason.value)

    if result.outcome == Outcome.NEEDS_VERIFICATION:
        await verification.ensure_verification_pending(db, result.user)
        return LoginResponse(
            auth_success=False,
            message=EMAIL_NOT_VERIFIED,
            requires_verification=True,
        )

    issued = await issue_login(result.user, store)
    if issued.session_id:
        set_session_cookie(response, issued.session_id)
    return LoginResponse(
        auth_success=True,
        message="Login successful",
        user=UserResponse.from_user(result.user),
        token=issued.token,
    )


@router.post("/logout/user", response_model=LogoutResponse)
async def logout(
    request: Request,
    response: Response,
    store: SessionStore = Depends(get_session_store),
) -> LogoutResponse:
    """Destroy the session and clear its cookie. Bearer tokens are discarded client-side."""
    await end_session(request, store)
    clear_session_cookie(response)
    return LogoutResponse(logout_success=True, message="User logged out successfully")


@router.get("/auth/user", response_model=CurrentUserResponse)
async def current_user(
    ctx: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentUserResponse:
    """Resolve the caller from either transport and return their profile."""
    user = await get_user(db, ctx.user_id)
    if user is None:
        raise NotAuthenticated("User not found")
    return CurrentUserResponse(
        auth_success=True,
        message="User Logged In",
        user=UserResponse.from_user(user),
    )


@router.post("/check-email", response_model=CheckEmailResponse)
async def check_email(
    data: CheckEmailRequest,
    db: AsyncSession = Depends(get_db),
):
    """Pre-registration check: format, then whether the address is taken."""
    if not normalize_email(data.email):
        return json_response(
            CheckEmailResponse(is_valid=False, reason="Email is required"),
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    try:
        email = validate_email_format(data.email)
    except ValueError as e:
        return CheckEmailResponse(is_valid=False, reason=str(e))
    if await find_user_by_email(db, email):
        return CheckEmailResponse(is_valid=False, reason="Email is already registered. Please sign in")
    return CheckEmailResponse(is_valid=True, reason="Email is available for registration")
