# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pytest fixtures. Each test gets a fresh in-memory SQLite database and session store."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sharesphere_server.auth import hash_password
from sharesphere_server.database import get_db
from sharesphere_server.main import app
from sharesphere_server.models import AuthStrategy, Base, User
from sharesphere_server.session_store import InMemorySessionStore


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture verification emails instead of sending them."""
    sent: list[dict] = []

    async def fake_send(to: str, display_name: str, token: str) -> bool:
        sent.append({"to": to, "display_name": display_name, "token": token})
        return True

    monkeypatch.setattr("sharesphere_server.services.verification.send_verification_email", fake_send)
    return sent


@pytest.fixture
async def client(session_maker, session_store, sent_emails):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_store = session_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user row directly. Password accounts get a real bcrypt hash."""

    async def _make_user(
        email: str | None = "student@uni.edu",
        password: str | None = "secret1",
        strategy: AuthStrategy = AuthStrategy.CREDENTIALS,
        verified: bool = True,
        username: str = "student",
        profile_url: str | None = None,
    ) -> User:
        user = User(
            username=username,
            display_name=username.title(),
            email=email,
            password_hash=hash_password(password) if password and strategy == AuthStrategy.CREDENTIALS else None,
            auth_strategy=strategy.value,
            profile_url=profile_url,
            email_verified=verified,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user

