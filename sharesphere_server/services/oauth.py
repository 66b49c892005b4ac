# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""OAuth 2.0 handshakes for Google (federated) and GitHub (code host)."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from jose import JWTError, jwt

from sharesphere_server.config import settings
from sharesphere_server.errors import ProviderError
from sharesphere_server.services.linking import ProviderProfile

logger = logging.getLogger(__name__)

GOOGLE = "google"
GITHUB = "github"

STATE_AUDIENCE = "sharesphere-oauth-state"
STATE_TTL = timedelta(minutes=10)
STATE_COOKIE_NAME = "oauth_state"


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    authorize_url: str
    token_url: str
    profile_url: str
    scope: str
    client_id: str
    client_secret: str
    redirect_uri: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


def get_provider(name: str) -> OAuthProvider:
    """Provider config from settings. KeyError for unknown names."""
    if name == GOOGLE:
        return OAuthProvider(
            name=GOOGLE,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            profile_url="https://openidconnect.googleapis.com/v1/userinfo",
            scope="openid profile email",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
        )
    if name == GITHUB:
        return OAuthProvider(
            name=GITHUB,
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",
            profile_url="https://api.github.com/user",
            scope="user:email",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            redirect_uri=settings.github_redirect_uri,
        )
    raise KeyError(name)


def encode_state(provider: str, email: str | None = None) -> tuple[str, str]:
    """Signed, short-lived state carrying a nonce and an optional user-supplied email.

    Returns (state, nonce); the nonce goes into the oauth_state cookie.
    """
    nonce = secrets.token_urlsafe(16)
    payload: dict[str, Any] = {
        "nonce": nonce,
        "provider": provider,
        "aud": STATE_AUDIENCE,
        "exp": datetime.now(timezone.utc) + STATE_TTL,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.token_secret, algorithm=settings.jwt_algorithm), nonce


def decode_state(state: str | None, provider: str, nonce: str | None) -> dict[str, Any] | None:
    """Validate state against the provider and the cookie nonce."""
    if not state or not nonce:
        return None
    try:
        payload = jwt.decode(
            state,
            settings.token_secret,
            algorithms=[settings.jwt_algorithm],
            audience=STATE_AUDIENCE,
        )
    except JWTError:
        return None
    if payload.get("provider") != provider or not secrets.compare_digest(
        str(payload.get("nonce", "")), nonce
    ):
        return None
    return payload


def authorization_url(provider: OAuthProvider, state: str) -> str:
    params = {
        "client_id": provider.client_id,
        "redirect_uri": provider.redirect_uri,
        "response_type": "code",
        "scope": provider.scope,
        "state": state,
    }
    if provider.name == GOOGLE:
        params["prompt"] = "select_account"
    return str(httpx.URL(provider.authorize_url, params=params))


async def exchange_code(provider: OAuthProvider, code: str) -> str:
    """Trade the authorization code for an access token."""
    try:
        async with httpx.AsyncClient(timeout=settings.oauth_timeout_seconds) as client:
            r = await client.post(
                provider.token_url,
                data={
                    "client_id": provider.client_id,
                    "client_secret": provider.client_secret,
                    "code": code,
                    "redirect_uri": provider.redirect_uri,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ProviderError(f"{provider.name} token exchange failed: {e}") from e
    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        raise ProviderError(f"{provider.name} token exchange returned no access token")
    return access_token


async def _get_profile(provider: OAuthProvider, access_token: str) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=settings.oauth_timeout_seconds) as client:
            r = await client.get(
                provider.profile_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            r.raise_for_status()
            data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ProviderError(f"{provider.name} profile fetch failed: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError(f"{provider.name} profile is not an object")
    return data


def google_profile(data: dict[str, Any]) -> ProviderProfile:
    email = data.get("email")
    if not email or data.get("email_verified") is False:
        raise ProviderError("google profile has no verified email")
    return ProviderProfile(
        display_name=data.get("name") or email.split("@")[0],
        email=email,
        photo_url=data.get("picture"),
    )


def github_profile(data: dict[str, Any]) -> ProviderProfile:
    # Email deliberately not taken from the profile: it is optional and
    # unverified, so it is collected from the user and verified by us.
    profile_url = data.get("html_url")
    if not profile_url:
        raise ProviderError("github profile has no html_url")
    return ProviderProfile(
        display_name=data.get("name") or data.get("login") or "",
        profile_url=profile_url,
        photo_url=data.get("avatar_url"),
    )


async def fetch_profile(provider: OAuthProvider, code: str) -> ProviderProfile:
    """Complete the handshake and map the provider profile."""
    access_token = await exchange_code(provider, code)
    data = await _get_profile(provider, access_token)
    if provider.name == GOOGLE:
        return google_profile(data)
    return github_profile(data)
