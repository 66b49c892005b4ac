# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Session store tests: memory expiry, Redis fallback, and startup selection."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from sharesphere_server.models import User
from sharesphere_server.services.issuer import issue_login, start_session
from sharesphere_server.session_store import (
    FallbackSessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    create_session_store,
    new_session_id,
)


def _broken_redis_store() -> RedisSessionStore:
    client = AsyncMock()
    client.get.side_effect = RedisConnectionError("down")
    client.setex.side_effect = RedisConnectionError("down")
    client.delete.side_effect = RedisConnectionError("down")
    return RedisSessionStore(client)


async def test_memory_store_roundtrip():
    store = InMemorySessionStore()
    await store.set("abc", {"sub": "1"}, 60)
    assert await store.get("abc") == {"sub": "1"}
    await store.delete("abc")
    assert await store.get("abc") is None


async def test_memory_store_expiry(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr("sharesphere_server.session_store.time.monotonic", lambda: clock[0])
    store = InMemorySessionStore()
    await store.set("abc", {"sub": "1"}, 60)
    clock[0] += 59
    assert await store.get("abc") is not None
    clock[0] += 2
    assert await store.get("abc") is None


async def test_memory_store_purges_unread_sessions():
    """Sessions written but never read back are dropped on later writes."""
    store = InMemorySessionStore(purge_every=100)
    for _ in range(1000):
        await store.set(new_session_id(), {"sub": "1"}, 0)
    await store.set("live", {"sub": "2"}, 60)
    assert store.size <= 100
    assert await store.get("live") == {"sub": "2"}

    before = store.size
    assert store.purge_expired() == before - 1
    assert store.size == 1


async def test_redis_store_serializes_json():
    client = AsyncMock()
    client.get.return_value = b'{"sub": "1"}'
    store = RedisSessionStore(client)

    await store.set("abc", {"sub": "1"}, 60)
    client.setex.assert_awaited_once_with("sess:abc", 60, '{"sub": "1"}')
    assert await store.get("abc") == {"sub": "1"}
    client.get.assert_awaited_with("sess:abc")


async def test_fallback_store_survives_redis_outage():
    """Writes and reads degrade to memory when Redis errors."""
    store = FallbackSessionStore(_broken_redis_store())
    await store.set("abc", {"sub": "1"}, 60)
    assert await store.get("abc") == {"sub": "1"}
    await store.delete("abc")
    assert await store.get("abc") is None


async def test_create_store_without_url():
    store = await create_session_store(None)
    assert isinstance(store, InMemorySessionStore)


async def test_create_store_with_unreachable_redis():
    store = await create_session_store("redis://127.0.0.1:1/0")
    assert isinstance(store, InMemorySessionStore)


async def test_start_session_returns_none_when_store_fails():
    store = AsyncMock()
    store.set.side_effect = RedisConnectionError("down")
    assert await start_session(store, {"sub": "1"}) is None


async def test_issue_login_refuses_unverified_user():
    user = User(id=1, username="ada", display_name="Ada", email="ada@uni.edu", auth_strategy="credentials")
    user.email_verified = False
    with pytest.raises(ValueError):
        await issue_login(user, InMemorySessionStore())


def test_session_ids_are_unique():
    assert len({new_session_id() for _ in range(100)}) == 100
