# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Account linking: map an inbound provider identity onto exactly one user row."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.errors import AccountExistsError, EmailAlreadySetError, ProviderError
from sharesphere_server.models import AuthStrategy, User
from sharesphere_server.services.users import (
    find_user_by_email,
    find_user_by_profile_url,
    generate_unique_username,
    insert_user,
    insert_user_stats,
    normalize_email,
    update_user,
)

logger = logging.getLogger(__name__)

LINK_BY_EMAIL = "email"
LINK_BY_PROFILE_URL = "profile_url"


@dataclass(frozen=True)
class ProviderPolicy:
    """What a provider guarantees, and therefore which attribute links its identities."""

    strategy: AuthStrategy
    link_by: str
    email_guaranteed_verified: bool


@dataclass(frozen=True)
class ProviderProfile:
    """Provider profile reduced to the fields the auth core reads."""

    display_name: str
    email: str | None = None
    profile_url: str | None = None
    photo_url: str | None = None


FEDERATED_POLICY = ProviderPolicy(AuthStrategy.FEDERATED, LINK_BY_EMAIL, email_guaranteed_verified=True)
CODEHOST_POLICY = ProviderPolicy(AuthStrategy.CODEHOST, LINK_BY_PROFILE_URL, email_guaranteed_verified=False)


def _link_key(profile: ProviderProfile, policy: ProviderPolicy) -> str:
    if policy.link_by == LINK_BY_EMAIL:
        key = normalize_email(profile.email)
    else:
        key = profile.profile_url
    if not key:
        raise ProviderError(f"{policy.strategy.value} profile is missing its {policy.link_by}")
    return key


async def _find_linked(db: AsyncSession, key: str, policy: ProviderPolicy) -> User | None:
    if policy.link_by == LINK_BY_EMAIL:
        return await find_user_by_email(db, key)
    return await find_user_by_profile_url(db, key)


async def resolve_or_create_identity(
    db: AsyncSession, profile: ProviderProfile, policy: ProviderPolicy
) -> User:
    """Find the user row for this profile by the policy's linking key, creating it if absent.

    Existing rows are returned as stored: profile fields the user may have
    edited are never overwritten with provider values.
    """
    key = _link_key(profile, policy)
    user = await _find_linked(db, key, policy)
    if user is not None:
        if policy.email_guaranteed_verified and not user.email_verified:
            # Provider asserted ownership of this exact address
            await update_user(
                db, user, email_verified=True, email_verified_at=datetime.now(timezone.utc)
            )
        return user

    verified = policy.email_guaranteed_verified
    username = await generate_unique_username(db, profile.display_name)
    try:
        user = await insert_user(
            db,
            username=username,
            display_name=profile.display_name or username,
            email=profile.email if verified else None,
            password_hash=None,
            auth_strategy=policy.strategy.value,
            profile_url=profile.profile_url,
            photo_url=profile.photo_url,
            email_verified=verified,
            email_verified_at=datetime.now(timezone.utc) if verified else None,
        )
    except AccountExistsError:
        # Lost a creation race for the same link key; use the winner's row
        user = await _find_linked(db, key, policy)
        if user is None:
            raise
        return user
    await insert_user_stats(db, user.id)
    logger.info("Created %s account %s (%s)", policy.strategy.value, user.id, username)
    return user


async def attach_email(db: AsyncSession, user: User, email: str) -> User:
    """Give a code-host account its first email address, unverified.

    Allowed once per account; the row keeps linking by profile URL afterwards.
    """
    email = normalize_email(email)
    if not email:
        raise ValueError("Email is required")
    if user.email is not None:
        if user.email == email:
            return user
        raise EmailAlreadySetError("This account already has an email address")
    if user.auth_strategy != AuthStrategy.CODEHOST.value:
        raise EmailAlreadySetError("Only code-host accounts can add an email")
    other = await find_user_by_email(db, email)
    if other is not None:
        raise AccountExistsError()
    await update_user(db, user, email=email, email_verified=False, email_verified_at=None)
    logger.info("Attached email to code-host account %s", user.id)
    return user


async def find_user_for_verification(
    db: AsyncSession, email: str, profile_url: str | None = None
) -> User | None:
    """Locate the account a verification email is for.

    Code-host users are found by profile URL, everyone else by email. Nothing
    is written here: a code-host account gets its first email only through
    the signed OAuth state of a completed GitHub login.
    """
    if profile_url:
        return await find_user_by_profile_url(db, profile_url)
    return await find_user_by_email(db, email)
