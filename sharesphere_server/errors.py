# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Domain errors raised by the auth core and translated at the HTTP boundary."""


class AccountExistsError(Exception):
    """An account with this email or provider profile already exists."""

    def __init__(self, message: str = "An account with this email already exists. Please sign in.") -> None:
        super().__init__(message)


class UsernameExhaustedError(Exception):
    """No free username could be generated within the retry budget."""


class EmailAlreadySetError(Exception):
    """A code-host account already has an email; it can only be associated once."""


class ProviderError(Exception):
    """Identity provider handshake or profile fetch failed."""
