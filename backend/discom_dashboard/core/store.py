"""Session-scoped persisted store: Redis with an in-memory fallback.

Every key is namespaced
by a session identifier, so a ``SessionStore`` can only see and clear its own
session's entries.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import time
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis
from loguru import logger

from discom_dashboard.core.config import settings


# Global Redis client (initialized on first use)
_redis_client: Optional[redis.Redis] = None
_redis_checked: bool = False  # Connection attempted once per process

# In-memory fallback (when Redis is unavailable)
# Structure: {key: (value, expiry_timestamp)}
_memory_store: Dict[str, Tuple[Any, float]] = {}
_memory_store_max_size: int = 5000


async def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the Redis client; ``None`` when Redis is disabled or down."""
    global _redis_client, _redis_checked

    if not settings.REDIS_ENABLED:
        return None
    if _redis_checked:
        return _redis_client

    _redis_checked = True
    client = redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
        socket_connect_timeout=0.5,
        socket_timeout=0.5,
    )
    try:
        await asyncio.wait_for(client.ping(), timeout=0.5)
    except (redis.RedisError, OSError, asyncio.TimeoutError) as exc:
        logger.bind(error=str(exc)).warning("redis_unavailable_using_memory_store")
        await client.aclose()
        return None

    _redis_client = client
    logger.info("redis_session_store_connected")
    return _redis_client


async def close_redis_client() -> None:
    """Close Redis client connection."""
    global _redis_client, _redis_checked
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
    _redis_checked = False


def _get_memory(key: str) -> Optional[Any]:
    if key not in _memory_store:
        return None
    value, expiry = _memory_store[key]
    if expiry > 0 and time.time() > expiry:
        del _memory_store[key]
        return None
    return value


def _set_memory(key: str, value: Any, ttl: int) -> None:
    # Evict the oldest 10% once full (insertion order approximates age)
    if len(_memory_store) >= _memory_store_max_size:
        for old_key in list(_memory_store)[: int(_memory_store_max_size * 0.1)]:
            del _memory_store[old_key]
    expiry = time.time() + ttl if ttl > 0 else 0
    _memory_store[key] = (value, expiry)


def _clear_memory(pattern: str) -> int:
    doomed = [k for k in _memory_store if fnmatch.fnmatch(k, pattern)]
    for key in doomed:
        del _memory_store[key]
    return len(doomed)


class SessionStore:
    """Key/value persistence for exactly one session.

    Values must be JSON-serialisable. Reads and writes go to Redis when it is
    reachable and always to the memory fallback, so a Redis outage mid-session
    degrades to process-local persistence instead of losing state.
    """

    def __init__(self, session_id: str, *, ttl: Optional[int] = None):
        if not session_id:
            raise ValueError("session_id is required")
        self.session_id = session_id
        self.ttl = settings.SESSION_TTL_SEC if ttl is None else ttl

    def _key(self, key: str) -> str:
        return f"{settings.SESSION_KEY_PREFIX}:{self.session_id}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        full_key = self._key(key)
        client = await get_redis_client()
        if client is not None:
            try:
                raw = await asyncio.wait_for(client.get(full_key), timeout=0.1)
                if raw is not None:
                    return json.loads(raw)
            except (redis.RedisError, asyncio.TimeoutError) as exc:
                logger.bind(key=full_key, error=str(exc)).warning("session_store_get_failed")
        return _get_memory(full_key)

    async def set(self, key: str, value: Any) -> None:
        full_key = self._key(key)
        client = await get_redis_client()
        if client is not None:
            try:
                await client.setex(full_key, self.ttl, json.dumps(value))
            except redis.RedisError as exc:
                logger.bind(key=full_key, error=str(exc)).warning("session_store_set_failed")
        _set_memory(full_key, value, self.ttl)

    async def delete(self, key: str) -> None:
        full_key = self._key(key)
        client = await get_redis_client()
        if client is not None:
            try:
                await client.delete(full_key)
            except redis.RedisError as exc:
                logger.bind(key=full_key, error=str(exc)).warning("session_store_delete_failed")
        _memory_store.pop(full_key, None)

    async def clear(self) -> int:
        """Remove every key belonging to this session."""
        pattern = self._key("*")
        deleted = 0
        client = await get_redis_client()
        if client is not None:
            try:
                keys = [k async for k in client.scan_iter(match=pattern)]
                if keys:
                    deleted += await client.delete(*keys)
            except redis.RedisError as exc:
                logger.bind(pattern=pattern, error=str(exc)).warning("session_store_clear_failed")
        deleted += _clear_memory(pattern)
        return deleted
