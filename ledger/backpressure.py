# ledger/backpressure.py
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis.asyncio import Redis
from redis.asyncio.client import Redis as RedisType

import config
from ledger.errors import StorageError

log = logging.getLogger("ledger.backpressure")


# =========================
# Redis client
# =========================

# Redis client singleton (per process)
_redis: Optional[RedisType] = None
_redis_lock = asyncio.Lock()


async def get_redis() -> RedisType:
    global _redis
    if _redis is not None:
        return _redis
    async with _redis_lock:
        if _redis is not None:
            return _redis
        _redis = Redis.from_url(
            config.redis_url(),
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return _redis


async def get_redis_or_none() -> Optional[RedisType]:
    """Best-effort Redis getter.

    Returns None if Redis is missing/unavailable. Health checks use this
    directly; ledger code goes through require_redis().
    """
    try:
        return await get_redis()
    except Exception:
        log.warning("Redis client unavailable", exc_info=True)
        return None


async def require_redis() -> RedisType:
    r = await get_redis_or_none()
    if r is None:
        raise StorageError("Storage is unavailable")
    return r


async def close_redis() -> None:
    global _redis
    if _redis is None:
        return
    try:
        await _redis.aclose()
    finally:
        _redis = None


# =========================
# Per-key in-process locks
# =========================
#
# Ledger read-modify-write and code compare-and-set both run under a lock
# keyed by the storage key. Entries are reference counted and dropped when
# the last holder leaves, so the map only holds keys that are in flight.
# This serializes writers inside one process; running several server
# processes against one Redis requires a shared lock instead.

_key_locks: dict[str, list] = {}


@asynccontextmanager
async def key_lock(key: str) -> AsyncIterator[None]:
    entry = _key_locks.get(key)
    if entry is None:
        entry = [asyncio.Lock(), 0]
        _key_locks[key] = entry
    entry[1] += 1
    try:
        async with entry[0]:
            yield
    finally:
        entry[1] -= 1
        if entry[1] <= 0 and _key_locks.get(key) is entry:
            del _key_locks[key]


def locks_in_flight() -> int:
    return len(_key_locks)
