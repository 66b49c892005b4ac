# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email verification API routes."""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.api.schemas import (
    ResendVerificationRequest,
    SendVerificationRequest,
    VerificationResult,
    VerificationStatusResponse,
    VerifyEmailRequest,
    json_response,
)
from sharesphere_server.config import settings
from sharesphere_server.database import get_db
from sharesphere_server.services import verification
from sharesphere_server.services.linking import find_user_for_verification
from sharesphere_server.services.users import find_user_by_email, validate_email_format

logger = logging.getLogger(__name__)

router = APIRouter(tags=["verification"])

INVALID_TOKEN = "Invalid or expired token"


def _failure(error: str, status_code: int):
    return json_response(
        VerificationResult(success=False, error=error), status_code=status_code, exclude_none=True
    )


def _frontend_result_url(**params: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/email-verified?{urlencode(params)}"


@router.post("/send-verification")
async def send_verification(
    data: SendVerificationRequest,
    db: AsyncSession = Depends(get_db),
):
    """(Re)issue a verification token and email it.

    With profileUrl the account is a code-host one. Its email must already be
    on the account, attached by /auth/github?email=.
    """
    if not data.email or not data.user_name:
        return _failure("Email and userName are required", status.HTTP_400_BAD_REQUEST)
    try:
        email = validate_email_format(data.email)
    except ValueError as e:
        return _failure(str(e), status.HTTP_400_BAD_REQUEST)
    user = await find_user_for_verification(db, email, data.profile_url)
    if user is None:
        return _failure("User not found", status.HTTP_404_NOT_FOUND)
    if user.email is None:
        return _failure("Sign in with GitHub again to add your email", status.HTTP_400_BAD_REQUEST)
    if user.email != email:
        return _failure("Email does not match this account", status.HTTP_400_BAD_REQUEST)
    if user.email_verified:
        return _failure("Email is already verified", status.HTTP_400_BAD_REQUEST)

    if not await verification.send_verification(db, user):
        return _failure("Failed to send verification email", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return json_response(
        VerificationResult(success=True, message="Verification email sent successfully"),
        exclude_none=True,
    )


@router.post("/resend-verification")
async def resend_verification(
    data: ResendVerificationRequest,
    db: AsyncSession = Depends(get_db),
):
    """Replace any pending verification token with a fresh one and email it."""
    try:
        email = validate_email_format(data.email)
    except ValueError as e:
        return _failure(str(e), status.HTTP_400_BAD_REQUEST)
    user = await find_user_by_email(db, email)
    if user is None:
        return _failure("User not found", status.HTTP_404_NOT_FOUND)
    if user.email_verified:
        return _failure("Email is already verified", status.HTTP_400_BAD_REQUEST)

    await verification.revoke_pending(db, user.id)
    if not await verification.send_verification(db, user):
        return _failure("Failed to resend verification email", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return json_response(
        VerificationResult(success=True, message="Verification email sent successfully"),
        exclude_none=True,
    )


@router.post("/verify-email")
async def verify_email(
    data: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
):
    """Consume a verification token from a JSON body."""
    if not data.token:
        return _failure("No token provided", status.HTTP_400_BAD_REQUEST)
    summary = await verification.complete_verification(db, data.token)
    if summary is None:
        return _failure(INVALID_TOKEN, status.HTTP_400_BAD_REQUEST)
    return json_response(
        VerificationResult(success=True, email=summary.email, message="Email verified successfully"),
        exclude_none=True,
    )


@router.post("/verify-email/{token}", response_class=RedirectResponse)
async def verify_email_redirect(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    """Consume a verification token from the path and redirect back to the frontend."""
    try:
        summary = await verification.complete_verification(db, token)
    except SQLAlchemyError:
        logger.exception("Email verification failed")
        await db.rollback()
        return RedirectResponse(
            url=_frontend_result_url(success="false", reason="server_error"),
            status_code=status.HTTP_303_SEE_OTHER,
        )
    if summary is None:
        url = _frontend_result_url(success="false", reason="invalid_or_expired")
    else:
        url = _frontend_result_url(success="true")
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/verification-status/{email}", response_model=VerificationStatusResponse)
async def verification_status(
    email: str,
    db: AsyncSession = Depends(get_db),
) -> VerificationStatusResponse:
    """Whether an account exists for this email and has verified it."""
    user = await find_user_by_email(db, email)
    if user is None:
        return VerificationStatusResponse(
            success=False,
            is_verified=False,
            message="No existing user found. Please sign up first.",
        )
    return VerificationStatusResponse(
        success=True,
        is_verified=user.email_verified,
        message="Email verification status checked successfully. User exists.",
    )
