# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Authentication: password hashing, JWT claim sets, and the request authenticator."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from sharesphere_server.config import settings
from sharesphere_server.models import User
from sharesphere_server.session_store import get_session_store

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)
bearer_scheme = HTTPBearer(auto_error=False)

CLAIM_KEYS = ("sub", "email", "username", "email_verified", "auth_strategy")


class NotAuthenticated(HTTPException):
    """401 rendered as {"authSuccess": false, "error": ...} by the app's exception handler."""

    def __init__(self, detail: str = "Authentication required") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


@dataclass(frozen=True)
class UserContext:
    """The caller's identity, independent of which transport authenticated it."""

    user_id: int
    email: str | None
    username: str
    email_verified: bool
    auth_strategy: str
    transport: str  # "token" or "session"


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    """Verify a password against its hash. Never raises on a mismatch or a malformed hash."""
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def build_claims(user: User) -> dict[str, Any]:
    """Claim set shared by the bearer token and the server-side session."""
    return {
        "sub": str(user.id),
        "email": user.email,
        "username": user.username,
        "email_verified": bool(user.email_verified),
        "auth_strategy": user.auth_strategy,
    }


def create_access_token(claims: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Sign a JWT carrying the claim set plus issuer, audience, and expiry."""
    now = datetime.now(timezone.utc)
    to_encode = {k: claims[k] for k in CLAIM_KEYS if k in claims}
    to_encode.update(
        {
            "iat": now,
            "exp": now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes)),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
    )
    return jwt.encode(to_encode, settings.token_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token. Returns None on any signature, expiry, issuer or audience failure."""
    try:
        return jwt.decode(
            token,
            settings.token_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError:
        return None


def _context_from_claims(claims: dict[str, Any], transport: str) -> UserContext | None:
    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return UserContext(
        user_id=user_id,
        email=claims.get("email"),
        username=claims.get("username") or "",
        email_verified=bool(claims.get("email_verified")),
        auth_strategy=claims.get("auth_strategy") or "",
        transport=transport,
    )


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserContext | None:
    """Resolve the caller from a bearer token, else from the session cookie.

    A bearer token that is present but invalid is rejected outright; the
    session cookie is only consulted when no bearer token was sent.
    """
    if credentials:
        payload = decode_token(credentials.credentials)
        ctx = _context_from_claims(payload, "token") if payload else None
        if ctx is None:
            raise NotAuthenticated("Invalid or expired token")
        return ctx

    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        return None
    data = await get_session_store(request).get(session_id)
    if not data:
        return None
    return _context_from_claims(data, "session")


async def get_current_user(
    user: UserContext | None = Depends(get_optional_user),
) -> UserContext:
    """Require an authenticated caller. Raises 401 otherwise."""
    if user is None:
        raise NotAuthenticated()
    return user
