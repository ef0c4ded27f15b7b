from __future__ import annotations

import json
import logging
from typing import Any

from redis.exceptions import RedisError

from ledger import backpressure
from ledger.errors import StorageError

log = logging.getLogger("ledger.kv")

_JSON = json.dumps
_JLOAD = json.loads


def _j(obj: Any) -> str:
    return _JSON(obj, separators=(",", ":"), ensure_ascii=False)


def _unj(s: str | bytes | None, default: Any = None) -> Any:
    if s is None:
        return default
    if isinstance(s, (bytes, bytearray)):
        s = s.decode("utf-8", errors="ignore")
    try:
        return _JLOAD(s)
    except ValueError:
        log.warning("Undecodable JSON value in store; treating as missing")
        return default


def _str(k: str | bytes) -> str:
    return k.decode("utf-8", errors="ignore") if isinstance(k, (bytes, bytearray)) else str(k)


async def kv_get_json(key: str, default: Any = None) -> Any:
    r = await backpressure.require_redis()
    try:
        val = await r.get(key)
    except RedisError as e:
        log.exception("GET %s failed", key)
        raise StorageError("Storage read failed") from e
    return _unj(val, default=default)


async def kv_set_json(key: str, value: Any, *, ex: int | None = None) -> None:
    r = await backpressure.require_redis()
    try:
        await r.set(key, _j(value), ex=ex)
    except RedisError as e:
        log.exception("SET %s failed", key)
        raise StorageError("Storage write failed") from e


async def kv_set_json_nx(key: str, value: Any) -> bool:
    """SET only if the key does not exist. Returns True if written."""
    r = await backpressure.require_redis()
    try:
        return bool(await r.set(key, _j(value), nx=True))
    except RedisError as e:
        log.exception("SET NX %s failed", key)
        raise StorageError("Storage write failed") from e


async def kv_del(*keys: str) -> int:
    if not keys:
        return 0
    r = await backpressure.require_redis()
    try:
        return int(await r.delete(*keys))
    except RedisError as e:
        log.exception("DEL %s failed", keys)
        raise StorageError("Storage delete failed") from e


async def kv_keys(prefix: str) -> list[str]:
    """All keys starting with prefix (SCAN, so safe on a live server)."""
    r = await backpressure.require_redis()
    out: list[str] = []
    try:
        async for k in r.scan_iter(match=f"{prefix}*", count=200):
            out.append(_str(k))
    except RedisError as e:
        log.exception("SCAN %s* failed", prefix)
        raise StorageError("Storage scan failed") from e
    out.sort()
    return out
