# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Credential store: user rows and their statistics."""

import logging
import re
import secrets
import unicodedata
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.config import settings
from sharesphere_server.errors import AccountExistsError, UsernameExhaustedError
from sharesphere_server.models import User, UserStats

logger = logging.getLogger(__name__)

USERNAME_MAX_LENGTH = 64
# Room for the three-digit collision suffix
_USERNAME_BASE_LENGTH = USERNAME_MAX_LENGTH - 3


def normalize_email(email: str | None) -> str | None:
    """Trim and lower-case; empty becomes None."""
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def find_user_by_email(db: AsyncSession, email: str | None) -> User | None:
    email = normalize_email(email)
    if not email:
        return None
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def find_user_by_profile_url(db: AsyncSession, profile_url: str | None) -> User | None:
    if not profile_url:
        return None
    result = await db.execute(select(User).where(User.profile_url == profile_url))
    return result.scalar_one_or_none()


async def username_exists(db: AsyncSession, username: str) -> bool:
    result = await db.execute(select(User.id).where(User.username == username))
    return result.first() is not None


def slugify_username(display_name: str | None) -> str:
    """Lower-case alphanumerics of the display name, e.g. "Ada Lovelace" -> "adalovelace".

    Accents are folded first, so "Zoë" keeps its letters as "zoe".
    """
    folded = unicodedata.normalize("NFKD", display_name or "").encode("ascii", "ignore").decode("ascii")
    base = re.sub(r"[^a-z0-9]+", "", folded.lower())
    return base[:_USERNAME_BASE_LENGTH] or "user"


def username_candidates(base: str, attempts: int) -> Iterator[str]:
    """The bare slug first, then slug plus a random three-digit suffix."""
    if attempts <= 0:
        return
    yield base
    for _ in range(attempts - 1):
        yield f"{base}{secrets.randbelow(900) + 100}"


async def generate_unique_username(
    db: AsyncSession, display_name: str | None, max_attempts: int | None = None
) -> str:
    """Return a username not currently taken.

    Check-then-insert: two concurrent registrations can still pick the same
    candidate, in which case the unique constraint rejects one insert.
    """
    attempts = max_attempts if max_attempts is not None else settings.username_max_attempts
    base = slugify_username(display_name)
    for candidate in username_candidates(base, attempts):
        if not await username_exists(db, candidate):
            return candidate
    raise UsernameExhaustedError(f"No free username for {base!r} after {attempts} attempts")


async def insert_user(db: AsyncSession, **fields: Any) -> User:
    """Insert a user row. Uniqueness violations become AccountExistsError."""
    if "email" in fields:
        fields["email"] = normalize_email(fields["email"])
    user = User(**fields)
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        logger.info("User insert rejected by unique constraint: %s", e.orig)
        raise AccountExistsError() from e
    return user


async def insert_user_stats(db: AsyncSession, user_id: int) -> UserStats:
    """Zeroed statistics row for a new account."""
    stats = UserStats(
        user_id=user_id,
        posts_count=0,
        likes_received=0,
        review_count=0,
        average_rating=0,
    )
    db.add(stats)
    await db.flush()
    return stats


async def update_user(db: AsyncSession, user: User, **fields: Any) -> User:
    """Apply field updates to a user row. Uniqueness violations become AccountExistsError."""
    if "email" in fields:
        fields["email"] = normalize_email(fields["email"])
    for key, value in fields.items():
        setattr(user, key, value)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise AccountExistsError() from e
    return user


async def mark_email_verified(db: AsyncSession, user_id: int) -> User | None:
    user = await get_user(db, user_id)
    if user is None:
        return None
    return await update_user(
        db, user, email_verified=True, email_verified_at=datetime.now(timezone.utc)
    )


def validate_email_format(email: str | None) -> str:
    """Return the normalized address or raise ValueError with a user-facing message."""
    email = normalize_email(email)
    if not email:
        raise ValueError("Email is required")
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError("Please enter a valid email address") from e
    return email
