# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database models."""

from sharesphere_server.models.base import Base
from sharesphere_server.models.user_stats import UserStats
from sharesphere_server.models.user import AuthStrategy, User
from sharesphere_server.models.verification_token import EMAIL_VERIFICATION, VerificationToken

__all__ = [
    "Base",
    "AuthStrategy",
    "User",
    "UserStats",
    "VerificationToken",
    "EMAIL_VERIFICATION",
]
