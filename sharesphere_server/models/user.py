# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""User model."""

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharesphere_server.models.base import Base, TimestampMixin
from sharesphere_server.models.user_stats import UserStats

DEFAULT_BIO = "Hi there! I'm new to ShareSphere."
DEFAULT_LOCATION = "Not specified"


class AuthStrategy(str, enum.Enum):
    """How an account authenticates. Stored as its string value."""

    CREDENTIALS = "credentials"
    FEDERATED = "federated"
    CODEHOST = "codehost"


class User(Base, TimestampMixin):
    """Canonical account. One row per email and one row per provider profile URL."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # NULL allowed for code-host accounts that have not supplied one yet
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_strategy: Mapped[str] = mapped_column(String(16), nullable=False)
    profile_url: Mapped[str | None] = mapped_column(String(512), unique=True, nullable=True, index=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True, default=DEFAULT_BIO)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True, default=DEFAULT_LOCATION)
    joined_on: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    stats: Mapped["UserStats"] = relationship(
        "UserStats", back_populates="user", cascade="all, delete-orphan", uselist=False
    )
