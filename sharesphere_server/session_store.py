# Copyright (C) 2024 ShareSphere Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Server-side session stores: in-process memory and Redis, with a degrading wrapper."""

import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any

import redis.asyncio as aioredis
from fastapi import Request
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "sess:"


def new_session_id() -> str:
    """Random, unguessable session identifier for the cookie."""
    return secrets.token_urlsafe(32)


class SessionStore(ABC):
    """Session data keyed by session id, with a per-entry TTL."""

    @abstractmethod
    async def get(self, session_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def set(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-local store. Sessions are lost on restart and not shared between workers.

    Expired entries are purged every `purge_every` writes, so sessions that
    are never read back do not accumulate.
    """

    def __init__(self, purge_every: int = 100) -> None:
        self._data: dict[str, tuple[float, dict[str, Any]]] = {}
        self._purge_every = max(1, purge_every)
        self._writes = 0

    async def get(self, session_id: str) -> dict[str, Any] | None:
        entry = self._data.get(session_id)
        if entry is None:
            return None
        expires, data = entry
        if expires <= time.monotonic():
            self._data.pop(session_id, None)
            return None
        return dict(data)

    async def set(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None:
        self._writes += 1
        if self._writes % self._purge_every == 0:
            self.purge_expired()
        self._data[session_id] = (time.monotonic() + ttl_seconds, dict(data))

    async def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = time.monotonic()
        expired = [sid for sid, (expires, _) in self._data.items() if expires <= now]
        for sid in expired:
            del self._data[sid]
        return len(expired)

    @property
    def size(self) -> int:
        return len(self._data)


class RedisSessionStore(SessionStore):
    """Distributed store. Entries are JSON under "sess:<id>" with SETEX expiry."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def get(self, session_id: str) -> dict[str, Any] | None:
        raw = await self._client.get(SESSION_KEY_PREFIX + session_id)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable session payload")
            return None

    async def set(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None:
        await self._client.setex(SESSION_KEY_PREFIX + session_id, ttl_seconds, json.dumps(data))

    async def delete(self, session_id: str) -> None:
        await self._client.delete(SESSION_KEY_PREFIX + session_id)

    async def close(self) -> None:
        await self._client.aclose()


class FallbackSessionStore(SessionStore):
    """Primary store with an in-process fallback used whenever the primary errors.

    Writes that fail on the primary land in the fallback; reads check the
    primary first and then the fallback.
    """

    def __init__(self, primary: SessionStore, fallback: SessionStore | None = None) -> None:
        self.primary = primary
        self.fallback = fallback or InMemorySessionStore()

    async def get(self, session_id: str) -> dict[str, Any] | None:
        try:
            data = await self.primary.get(session_id)
            if data is not None:
                return data
        except (RedisError, OSError) as e:
            logger.warning("Session store read failed, checking fallback: %s", e)
        return await self.fallback.get(session_id)

    async def set(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self.primary.set(session_id, data, ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Session store write failed, using in-process fallback: %s", e)
            await self.fallback.set(session_id, data, ttl_seconds)

    async def delete(self, session_id: str) -> None:
        try:
            await self.primary.delete(session_id)
        except (RedisError, OSError) as e:
            logger.warning("Session store delete failed: %s", e)
        await self.fallback.delete(session_id)

    async def close(self) -> None:
        await self.primary.close()


async def create_session_store(redis_url: str | None) -> SessionStore:
    """Pick the session store once at startup. Unreachable Redis means memory for the process lifetime."""
    if not redis_url:
        logger.info("REDIS_URL not set - sessions kept in process memory")
        return InMemorySessionStore()
    client = aioredis.from_url(redis_url, socket_timeout=2.0, socket_connect_timeout=2.0)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis unreachable at startup (%s) - sessions kept in process memory", e)
        await client.aclose()
        return InMemorySessionStore()
    logger.info("Using Redis session store")
    return FallbackSessionStore(RedisSessionStore(client))


def get_session_store(request: Request) -> SessionStore:
    """FastAPI dependency: the store chosen at startup."""
    return request.app.state.session_store
