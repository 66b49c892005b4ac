# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Bearer token and password hashing tests."""

from datetime import timedelta

from jose import jwt

from sharesphere_server.auth import (
    build_claims,
    create_access_token,
    decode_token,
    hash_password,
    verify_password,
)
from sharesphere_server.config import settings
from sharesphere_server.models import AuthStrategy, User

CLAIMS = {
    "sub": "7",
    "email": "ada@uni.edu",
    "username": "ada",
    "email_verified": True,
    "auth_strategy": "credentials",
}


def test_token_carries_claims():
    payload = decode_token(create_access_token(CLAIMS))
    assert payload is not None
    for key, value in CLAIMS.items():
        assert payload[key] == value
    assert payload["iss"] == settings.jwt_issuer
    assert payload["aud"] == settings.jwt_audience
    assert payload["exp"] > payload["iat"]


def test_unknown_claims_are_dropped():
    payload = decode_token(create_access_token({**CLAIMS, "is_admin": True}))
    assert "is_admin" not in payload


def test_expired_token_rejected():
    token = create_access_token(CLAIMS, expires_delta=timedelta(seconds=-1))
    assert decode_token(token) is None


def test_wrong_secret_rejected():
    token = jwt.encode(
        {**CLAIMS, "iss": settings.jwt_issuer, "aud": settings.jwt_audience},
        "some-other-secret",
        algorithm=settings.jwt_algorithm,
    )
    assert decode_token(token) is None


def test_wrong_issuer_or_audience_rejected():
    for iss, aud in (("elsewhere", settings.jwt_audience), (settings.jwt_issuer, "elsewhere")):
        token = jwt.encode({**CLAIMS, "iss": iss, "aud": aud}, settings.token_secret, algorithm=settings.jwt_algorithm)
        assert decode_token(token) is None


def test_garbage_rejected():
    assert decode_token("not-a-token") is None


def test_build_claims():
    user = User(
        id=3,
        username="octo",
        display_name="Octo",
        email="octo@uni.edu",
        auth_strategy=AuthStrategy.CODEHOST.value,
        email_verified=True,
    )
    assert build_claims(user) == {
        "sub": "3",
        "email": "octo@uni.edu",
        "username": "octo",
        "email_verified": True,
        "auth_strategy": "codehost",
    }


def test_password_hashing():
    hashed = hash_password("secret1")
    assert hashed != "secret1"
    assert hashed.startswith("$2")
    assert verify_password("secret1", hashed)
    assert not verify_password("secret2", hashed)
    assert hash_password("secret1") != hashed


def test_verify_password_without_hash():
    assert verify_password("anything", None) is False
    assert verify_password("anything", "") is False
    assert verify_password("anything", "not-a-bcrypt-hash") is False
