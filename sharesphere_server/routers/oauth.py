# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Social login routes. The frontend opens these in a popup and listens for postMessage."""

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.api.schemas import UserResponse
from sharesphere_server.auth import create_access_token
from sharesphere_server.config import settings
from sharesphere_server.database import get_db
from sharesphere_server.errors import AccountExistsError, ProviderError, UsernameExhaustedError
from sharesphere_server.models import User
from sharesphere_server.services import oauth
from sharesphere_server.services.identity import AuthResult, Outcome, resolve_codehost, resolve_federated
from sharesphere_server.services.issuer import issue_login, set_session_cookie
from sharesphere_server.services.linking import ProviderProfile, attach_email
from sharesphere_server.services.users import get_user, validate_email_format
from sharesphere_server.services.verification import ensure_verification_pending
from sharesphere_server.session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["oauth"])

templates_dir = Path(__file__).resolve().parent.parent / "templates"
templates = Jinja2Templates(directory=str(templates_dir))

FAILURE_PATH = "/auth/failure"
SUCCESS_PATH = "/auth/success"


def _popup(request: Request, payload: dict[str, Any]) -> Response:
    """Page that posts the payload to the opener window and closes itself."""
    response = templates.TemplateResponse(
        request,
        "auth_popup.html",
        {"payload": payload, "target_origin": settings.frontend_url.rstrip("/")},
    )
    response.delete_cookie(oauth.STATE_COOKIE_NAME)
    return response


def _redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(oauth.STATE_COOKIE_NAME)
    return response


def _user_payload(user: User) -> dict[str, Any]:
    return UserResponse.from_user(user).model_dump(mode="json", by_alias=True)


def _begin(provider_name: str, email: str | None) -> RedirectResponse:
    provider = oauth.get_provider(provider_name)
    if not provider.configured:
        logger.warning("%s OAuth is not configured", provider_name)
        return _redirect(FAILURE_PATH)
    if email:
        try:
            email = validate_email_format(email)
        except ValueError:
            logger.info("Ignoring malformed email passed to %s login", provider_name)
            email = None
    state, nonce = oauth.encode_state(provider_name, email)
    response = RedirectResponse(
        url=oauth.authorization_url(provider, state), status_code=status.HTTP_302_FOUND
    )
    response.set_cookie(
        oauth.STATE_COOKIE_NAME,
        nonce,
        max_age=int(oauth.STATE_TTL.total_seconds()),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


async def _complete_handshake(
    request: Request, provider_name: str, code: str | None, state: str | None, error: str | None
) -> tuple[ProviderProfile, dict[str, Any]] | None:
    """Validate state and fetch the provider profile. None on any failure."""
    if error or not code:
        logger.info("%s OAuth returned without a code (error=%s)", provider_name, error)
        return None
    payload = oauth.decode_state(state, provider_name, request.cookies.get(oauth.STATE_COOKIE_NAME))
    if payload is None:
        logger.warning("%s OAuth state mismatch", provider_name)
        return None
    try:
        profile = await oauth.fetch_profile(oauth.get_provider(provider_name), code)
    except ProviderError as e:
        logger.warning("%s OAuth failed: %s", provider_name, e)
        return None
    return profile, payload


async def _grant(request: Request, user: User, store: SessionStore) -> Response:
    """Establish the session and hand off to /auth/success."""
    issued = await issue_login(user, store)
    if issued.session_id is None:
        # No session to read back on /auth/success; deliver the token directly
        return _popup(request, {"authSuccess": True, "user": _user_payload(user), "token": issued.token})
    response = _redirect(SUCCESS_PATH)
    set_session_cookie(response, issued.session_id)
    return response


@router.get("/google")
async def google_login(email: str | None = None):
    """Begin the Google redirect."""
    return _begin(oauth.GOOGLE, email)


@router.get("/github")
async def github_login(email: str | None = None):
    """Begin the GitHub redirect. email carries an address collected after a requireEmail prompt."""
    return _begin(oauth.GITHUB, email)


@router.get("/google/callback")
async def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    handshake = await _complete_handshake(request, oauth.GOOGLE, code, state, error)
    if handshake is None:
        return _redirect(FAILURE_PATH)
    profile, _ = handshake
    try:
        result = await resolve_federated(db, profile)
    except (AccountExistsError, UsernameExhaustedError, ProviderError) as e:
        logger.warning("Google identity resolution failed: %s", e)
        return _redirect(FAILURE_PATH)
    return await _grant(request, result.user, store)


@router.get("/github/callback")
async def github_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    handshake = await _complete_handshake(request, oauth.GITHUB, code, state, error)
    if handshake is None:
        return _redirect(FAILURE_PATH)
    profile, state_payload = handshake
    try:
        result = await resolve_codehost(db, profile)
    except (AccountExistsError, UsernameExhaustedError, ProviderError) as e:
        logger.warning("GitHub identity resolution failed: %s", e)
        return _redirect(FAILURE_PATH)

    user = result.user
    base = {"authSuccess": False, "provider": oauth.GITHUB, "profileUrl": user.profile_url or ""}
    supplied_email = state_payload.get("email")
    if result.outcome == Outcome.NEEDS_EMAIL and supplied_email:
        try:
            await attach_email(db, user, supplied_email)
        except AccountExistsError as e:
            return _popup(
                request,
                {**base, "requireEmail": True, "emailNotVerified": True, "message": str(e)},
            )
        result = AuthResult.needs_verification(user)

    if result.outcome == Outcome.NEEDS_EMAIL:
        return _popup(
            request,
            {
                **base,
                "requireEmail": True,
                "emailNotVerified": True,
                "message": "Please provide your email address",
            },
        )
    if result.outcome == Outcome.NEEDS_VERIFICATION:
        await ensure_verification_pending(db, user)
        return _popup(
            request,
            {
                **base,
                "requireEmail": False,
                "emailNotVerified": True,
                "message": "Please verify your email address",
            },
        )
    return await _grant(request, user, store)


@router.get("/success")
async def auth_success(
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    """Deliver the session's login to the opener as a bearer token plus user profile."""
    session_id = request.cookies.get(settings.session_cookie_name)
    claims = await store.get(session_id) if session_id else None
    user = None
    if claims:
        try:
            user = await get_user(db, int(claims["sub"]))
        except (KeyError, TypeError, ValueError):
            user = None
    if user is None:
        logger.info("Auth success reached without a session, redirecting to sign-in")
        return _redirect(f"{settings.frontend_url.rstrip('/')}/sign-in")
    token = create_access_token(claims)
    return _popup(request, {"authSuccess": True, "user": _user_payload(user), "token": token})


@router.get("/failure")
async def auth_failure(request: Request):
    return _popup(request, {"authSuccess": False, "user": None})
