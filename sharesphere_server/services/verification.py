# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Verification token service: issue, consume, and expire single-use email tokens."""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sharesphere_server.config import settings
from sharesphere_server.models import EMAIL_VERIFICATION, User, VerificationToken
from sharesphere_server.services.email import send_verification_email
from sharesphere_server.services.users import mark_email_verified

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSummary:
    """Owner of a valid, unused token."""

    token_id: int
    user_id: int
    email: str | None
    display_name: str


def hash_token(token: str) -> str:
    """Tokens are stored as SHA-256 hex; the raw value only travels in the email link."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def issue(db: AsyncSession, user_id: int, token_type: str = EMAIL_VERIFICATION) -> str:
    """Create a token row valid for the configured TTL and return the raw token."""
    token = secrets.token_urlsafe(32)  # 256 bits
    db.add(
        VerificationToken(
            user_id=user_id,
            token_hash=hash_token(token),
            token_type=token_type,
            expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.verification_token_ttl_hours),
        )
    )
    await db.flush()
    return token


async def consume(db: AsyncSession, token: str, token_type: str = EMAIL_VERIFICATION) -> TokenSummary | None:
    """Look up an unexpired, unused token. Does not mark it used."""
    if not token:
        return None
    digest = hash_token(token)
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(VerificationToken.id, User.id, User.email, User.display_name)
        .join(User, User.id == VerificationToken.user_id)
        .where(
            VerificationToken.token_hash == digest,
            VerificationToken.token_type == token_type,
            VerificationToken.used_at.is_(None),
            VerificationToken.expires_at > now,
        )
    )
    row = result.first()
    if row is None:
        await _log_rejection(db, digest, token_type, now)
        return None
    token_id, user_id, email, display_name = row
    return TokenSummary(token_id=token_id, user_id=user_id, email=email, display_name=display_name)


async def _log_rejection(db: AsyncSession, digest: str, token_type: str, now: datetime) -> None:
    result = await db.execute(
        select(VerificationToken.id).where(
            VerificationToken.token_hash == digest, VerificationToken.token_type == token_type
        )
    )
    token_id = result.scalar_one_or_none()
    if token_id is None:
        logger.info("Verification token rejected: unknown")
        return
    used = await db.execute(
        select(VerificationToken.id).where(
            VerificationToken.id == token_id, VerificationToken.used_at.is_not(None)
        )
    )
    if used.first() is not None:
        logger.info("Verification token %s rejected: already used", token_id)
    else:
        logger.info("Verification token %s rejected: expired (checked at %s)", token_id, now.isoformat())


async def mark_used(db: AsyncSession, token_id: int) -> bool:
    """Set used_at if not already set. Returns True only for the call that claimed the token."""
    result = await db.execute(
        update(VerificationToken)
        .where(VerificationToken.id == token_id, VerificationToken.used_at.is_(None))
        .values(used_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def has_pending(db: AsyncSession, user_id: int, token_type: str = EMAIL_VERIFICATION) -> bool:
    result = await db.execute(
        select(VerificationToken.id).where(
            VerificationToken.user_id == user_id,
            VerificationToken.token_type == token_type,
            VerificationToken.used_at.is_(None),
            VerificationToken.expires_at > datetime.now(timezone.utc),
        )
    )
    return result.first() is not None


async def revoke_pending(db: AsyncSession, user_id: int, token_type: str = EMAIL_VERIFICATION) -> int:
    """Delete every unused token of this type for the user."""
    result = await db.execute(
        delete(VerificationToken)
        .where(
            VerificationToken.user_id == user_id,
            VerificationToken.token_type == token_type,
            VerificationToken.used_at.is_(None),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def sweep_expired(db: AsyncSession) -> int:
    """Delete all expired tokens. Returns the number removed."""
    result = await db.execute(
        delete(VerificationToken)
        .where(VerificationToken.expires_at < datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    removed = result.rowcount or 0
    if removed:
        logger.info("Swept %d expired verification tokens", removed)
    return removed


async def complete_verification(db: AsyncSession, token: str) -> TokenSummary | None:
    """Consume a token, mark it used, flag the owner's email verified, then sweep expired rows.

    Returns None for any unknown, expired, or already-used token.
    """
    summary = await consume(db, token)
    if summary is None:
        return None
    if not await mark_used(db, summary.token_id):
        logger.info("Verification token %s claimed concurrently", summary.token_id)
        return None
    await mark_email_verified(db, summary.user_id)
    await sweep_expired(db)
    logger.info("Email verified for user %s", summary.user_id)
    return summary


async def send_verification(db: AsyncSession, user: User, email: str | None = None) -> bool:
    """Issue a fresh token, commit it, and email the link. Returns whether delivery succeeded.

    The token is committed before sending so a failed delivery leaves a
    resumable, unverified account rather than rolling anything back.
    """
    recipient = email or user.email
    if not recipient:
        raise ValueError("Cannot send verification without an email address")
    user_id, display_name = user.id, user.display_name
    token = await issue(db, user_id)
    await db.commit()
    delivered = await send_verification_email(recipient, display_name, token)
    if not delivered:
        logger.warning("Verification email for user %s was not delivered", user_id)
    return delivered


async def ensure_verification_pending(db: AsyncSession, user: User) -> bool:
    """Send a verification email unless a valid token is already outstanding."""
    if await has_pending(db, user.id):
        return True
    return await send_verification(db, user)
