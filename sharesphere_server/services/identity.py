# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Identity strategies: resolve a login attempt into a tagged outcome."""

import enum
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.auth import verify_password
from sharesphere_server.models import AuthStrategy, User
from sharesphere_server.services.linking import (
    CODEHOST_POLICY,
    FEDERATED_POLICY,
    ProviderProfile,
    resolve_or_create_identity,
)
from sharesphere_server.services.users import find_user_by_email

logger = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    VERIFIED_OK = "verified_ok"
    NEEDS_EMAIL = "needs_email"
    NEEDS_VERIFICATION = "needs_verification"
    REJECTED = "rejected"


class RejectReason(str, enum.Enum):
    """Reason codes returned to clients; values are the user-facing messages."""

    NO_USER = "no user found"
    WRONG_METHOD = "wrong authentication method"
    BAD_PASSWORD = "incorrect password"


@dataclass(frozen=True)
class AuthResult:
    outcome: Outcome
    user: User | None = None
    reason: RejectReason | None = None

    @classmethod
    def ok(cls, user: User) -> "AuthResult":
        return cls(Outcome.VERIFIED_OK, user)

    @classmethod
    def needs_email(cls, user: User) -> "AuthResult":
        return cls(Outcome.NEEDS_EMAIL, user)

    @classmethod
    def needs_verification(cls, user: User) -> "AuthResult":
        return cls(Outcome.NEEDS_VERIFICATION, user)

    @classmethod
    def rejected(cls, reason: RejectReason) -> "AuthResult":
        return cls(Outcome.REJECTED, reason=reason)


def logged_strategy(name: str) -> Callable:
    """Log every strategy outcome in one place."""

    def decorator(fn: Callable[..., Awaitable[AuthResult]]) -> Callable[..., Awaitable[AuthResult]]:
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs) -> AuthResult:
            result = await fn(*args, **kwargs)
            logger.info(
                "auth strategy=%s outcome=%s user=%s reason=%s",
                name,
                result.outcome.value,
                result.user.id if result.user is not None else None,
                result.reason.value if result.reason is not None else None,
            )
            return result

        return wrapper

    return decorator


def _gate_on_email(user: User) -> AuthResult:
    if not user.email:
        return AuthResult.needs_email(user)
    if not user.email_verified:
        return AuthResult.needs_verification(user)
    return AuthResult.ok(user)


@logged_strategy("credentials")
async def authenticate_password(db: AsyncSession, email: str, password: str) -> AuthResult:
    """Email + password login."""
    user = await find_user_by_email(db, email)
    if user is None:
        return AuthResult.rejected(RejectReason.NO_USER)
    if user.auth_strategy != AuthStrategy.CREDENTIALS.value:
        return AuthResult.rejected(RejectReason.WRONG_METHOD)
    if not verify_password(password, user.password_hash):
        return AuthResult.rejected(RejectReason.BAD_PASSWORD)
    if not user.email_verified:
        return AuthResult.needs_verification(user)
    return AuthResult.ok(user)


@logged_strategy("federated")
async def resolve_federated(db: AsyncSession, profile: ProviderProfile) -> AuthResult:
    """Provider that always supplies a verified email; never asks for one."""
    user = await resolve_or_create_identity(db, profile, FEDERATED_POLICY)
    return AuthResult.ok(user)


@logged_strategy("codehost")
async def resolve_codehost(db: AsyncSession, profile: ProviderProfile) -> AuthResult:
    """Provider linked by profile URL whose email may be missing or unverified."""
    user = await resolve_or_create_identity(db, profile, CODEHOST_POLICY)
    return _gate_on_email(user)
