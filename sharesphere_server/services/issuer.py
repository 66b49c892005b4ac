# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Session/token issuer: one login yields a server-side session and a bearer token."""

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request, Response
from redis.exceptions import RedisError

from sharesphere_server.auth import build_claims, create_access_token
from sharesphere_server.config import settings
from sharesphere_server.models import User
from sharesphere_server.session_store import SessionStore, new_session_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedLogin:
    token: str
    session_id: str | None
    claims: dict[str, Any]


async def start_session(store: SessionStore, claims: dict[str, Any]) -> str | None:
    """Persist claims under a new session id. None if the store could not take it."""
    session_id = new_session_id()
    try:
        await store.set(session_id, claims, settings.session_max_age_seconds)
    except (RedisError, OSError) as e:
        logger.warning("Session not established, continuing with bearer token only: %s", e)
        return None
    return session_id


async def issue_login(user: User, store: SessionStore) -> IssuedLogin:
    """Mint a bearer token and a session carrying the same claims.

    Only verified accounts with an email get either transport.
    """
    if not user.email or not user.email_verified:
        raise ValueError(f"Refusing to issue a session for unverified user {user.id}")
    claims = build_claims(user)
    token = create_access_token(claims)
    session_id = await start_session(store, claims)
    logger.info("Issued login for user %s (session=%s)", user.id, session_id is not None)
    return IssuedLogin(token=token, session_id=session_id, claims=claims)


def set_session_cookie(response: Response, session_id: str) -> None:
    """Cookie holds only the session id. Cross-site capable over TLS in production."""
    secure = settings.is_production
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        secure=secure,
        samesite="none" if secure else "lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    secure = settings.is_production
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=secure,
        samesite="none" if secure else "lax",
        path="/",
    )


async def end_session(request: Request, store: SessionStore) -> None:
    """Destroy the caller's session. Bearer tokens already issued stay valid until expiry."""
    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id:
        await store.delete(session_id)
