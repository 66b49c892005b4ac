# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Password auth endpoint tests: register, login, logout, and the dual-transport authenticator."""

from httpx import AsyncClient
from sqlalchemy import func, select

from sharesphere_server.models import AuthStrategy, User, UserStats
from tests.helpers import cookie_header, session_cookie

REGISTRATION = {
    "displayName": "Ada Lovelace",
    "email": "Ada@Uni.edu",
    "password": "engine42",
    "confirmPassword": "engine42",
}


async def _login(client: AsyncClient, email: str = "student@uni.edu", password: str = "secret1"):
    client.cookies.clear()
    return await client.post("/login", json={"email": email, "password": password})


async def test_register_creates_unverified_account(client: AsyncClient, db, sent_emails):
    """Registration stores a normalized, unverified password account and emails a link."""
    r = await client.post("/register", json=REGISTRATION)
    assert r.status_code == 201
    data = r.json()
    assert data["registerSuccess"] is True
    assert data["emailVerificationRequired"] is True
    assert data["user"] == {"email": "ada@uni.edu", "displayName": "Ada Lovelace"}

    user = (await db.execute(select(User).where(User.email == "ada@uni.edu"))).scalar_one()
    assert user.username == "adalovelace"
    assert user.auth_strategy == AuthStrategy.CREDENTIALS.value
    assert user.email_verified is False
    assert user.password_hash and user.password_hash != "engine42"
    stats = (await db.execute(select(UserStats).where(UserStats.user_id == user.id))).scalar_one()
    assert stats.posts_count == 0

    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == "ada@uni.edu"


async def test_register_duplicate_email(client: AsyncClient, make_user):
    """A second registration with a taken email (any case) is rejected."""
    await make_user(email="ada@uni.edu")
    r = await client.post("/register", json=REGISTRATION)
    assert r.status_code == 400
    assert r.json() == {
        "registerSuccess": False,
        "message": "An account with this email already exists. Please sign in.",
    }


async def test_register_validation(client: AsyncClient):
    """Mismatched and short passwords and bad emails are rejected before any write."""
    r = await client.post("/register", json={**REGISTRATION, "confirmPassword": "engine43"})
    assert r.status_code == 400
    assert r.json()["message"] == "Passwords do not match"

    r = await client.post("/register", json={**REGISTRATION, "password": "abc", "confirmPassword": "abc"})
    assert r.status_code == 400
    assert "at least 6" in r.json()["message"]

    r = await client.post("/register", json={**REGISTRATION, "email": "not-an-email"})
    assert r.status_code == 400
    assert r.json()["message"] == "Please enter a valid email address"


async def test_register_username_collision_gets_suffix(client: AsyncClient, make_user, db):
    """A taken username slug is retried with a numeric suffix."""
    await make_user(email="other@uni.edu", username="adalovelace")
    r = await client.post("/register", json=REGISTRATION)
    assert r.status_code == 201
    user = (await db.execute(select(User).where(User.email == "ada@uni.edu"))).scalar_one()
    assert user.username.startswith("adalovelace")
    assert user.username != "adalovelace"


async def test_login_unknown_user(client: AsyncClient):
    r = await _login(client, "nobody@uni.edu")
    assert r.status_code == 200
    assert r.json()["authSuccess"] is False
    assert r.json()["message"] == "no user found"


async def test_login_wrong_password(client: AsyncClient, make_user):
    await make_user()
    r = await _login(client, password="wrong-one")
    assert r.json()["authSuccess"] is False
    assert r.json()["message"] == "incorrect password"
    assert session_cookie(r) is None


async def test_login_social_account_with_password(client: AsyncClient, make_user):
    """A federated account has no password and cannot log in with one."""
    await make_user(strategy=AuthStrategy.FEDERATED, password=None)
    r = await _login(client)
    assert r.json()["authSuccess"] is False
    assert r.json()["message"] == "wrong authentication method"


async def test_login_unverified_issues_nothing(client: AsyncClient, make_user, sent_emails):
    """Correct password on an unverified account: no session, no token, a verification email."""
    await make_user(verified=False)
    r = await _login(client)
    data = r.json()
    assert data["authSuccess"] is False
    assert data["message"] == "email not verified"
    assert data["requiresVerification"] is True
    assert data["token"] is None
    assert session_cookie(r) is None
    assert len(sent_emails) == 1

    # A pending token is reused rather than a second email sent
    await _login(client)
    assert len(sent_emails) == 1


async def test_login_verified_issues_session_and_token(client: AsyncClient, make_user, session_store):
    """Verified login yields both transports carrying the same user."""
    user = await make_user(email="student@uni.edu")
    r = await _login(client, email="  Student@Uni.EDU ")
    data = r.json()
    assert data["authSuccess"] is True
    assert data["user"]["userId"] == user.id
    assert data["user"]["emailVerified"] is True
    assert data["token"]

    sid = session_cookie(r)
    assert sid
    claims = await session_store.get(sid)
    assert claims["sub"] == str(user.id)
    assert claims["email"] == "student@uni.edu"


async def test_both_transports_resolve_same_user(client: AsyncClient, make_user):
    """/auth/user answers identically for the session cookie and the bearer token."""
    await make_user()
    r = await _login(client)
    token = r.json()["token"]
    sid = session_cookie(r)

    client.cookies.clear()
    by_token = await client.get("/auth/user", headers={"Authorization": f"Bearer {token}"})
    client.cookies.clear()
    by_session = await client.get("/auth/user", headers=cookie_header(sid))

    assert by_token.status_code == 200
    assert by_session.status_code == 200
    assert by_token.json() == by_session.json()
    assert by_token.json()["authSuccess"] is True
    assert by_token.json()["user"]["email"] == "student@uni.edu"


async def test_invalid_bearer_does_not_fall_back_to_session(client: AsyncClient, make_user):
    """A bad bearer token fails even when a valid session cookie accompanies it."""
    await make_user()
    r = await _login(client)
    sid = session_cookie(r)

    client.cookies.clear()
    r = await client.get(
        "/auth/user",
        headers={"Authorization": "Bearer not.a.jwt", **cookie_header(sid)},
    )
    assert r.status_code == 401
    assert r.json() == {"authSuccess": False, "error": "Invalid or expired token"}


async def test_auth_user_requires_credentials(client: AsyncClient):
    client.cookies.clear()
    r = await client.get("/auth/user")
    assert r.status_code == 401
    assert r.json()["authSuccess"] is False


async def test_logout_destroys_session(client: AsyncClient, make_user, session_store):
    """Logout removes the server-side session; the bearer token keeps working."""
    await make_user()
    r = await _login(client)
    sid = session_cookie(r)
    token = r.json()["token"]

    client.cookies.clear()
    out = await client.post("/logout/user", headers=cookie_header(sid))
    assert out.status_code == 200
    assert out.json()["logoutSuccess"] is True
    assert await session_store.get(sid) is None

    client.cookies.clear()
    r = await client.get("/auth/user", headers=cookie_header(sid))
    assert r.status_code == 401
    client.cookies.clear()
    r = await client.get("/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200


async def test_check_email(client: AsyncClient, make_user):
    await make_user(email="taken@uni.edu")

    r = await client.post("/check-email", json={"email": "fresh@uni.edu"})
    assert r.json() == {"isValid": True, "reason": "Email is available for registration"}

    r = await client.post("/check-email", json={"email": "Taken@uni.edu"})
    assert r.json()["isValid"] is False
    assert "already registered" in r.json()["reason"]

    r = await client.post("/check-email", json={"email": "nope"})
    assert r.json()["isValid"] is False

    r = await client.post("/check-email", json={})
    assert r.status_code == 400


async def test_health(client: AsyncClient):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    r = await client.get("/")
    assert r.json()["status"] == "ok"


async def test_register_race_caught_by_unique_constraint(client: AsyncClient, db, make_user, monkeypatch):
    """When the duplicate pre-check misses a concurrent insert, the constraint still rejects it."""
    await make_user(email="ada@uni.edu")

    async def missed_lookup(db, email):
        return None

    monkeypatch.setattr("sharesphere_server.routers.auth.find_user_by_email", missed_lookup)
    r = await client.post("/register", json=REGISTRATION)
    assert r.status_code == 400
    assert r.json() == {
        "registerSuccess": False,
        "message": "An account with this email already exists. Please sign in.",
    }
    count = (await db.execute(select(func.count(User.id)).where(User.email == "ada@uni.edu"))).scalar_one()
    assert count == 1


async def test_register_failure_shape(client: AsyncClient):
    """Failed registrations carry only the success flag and a message."""
    r = await client.post("/register", json={**REGISTRATION, "confirmPassword": "nope42"})
    assert r.status_code == 400
    assert set(r.json()) == {"registerSuccess", "message"}
