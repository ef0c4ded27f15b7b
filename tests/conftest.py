"""Pytest configuration and fixtures. Run without real Redis by default."""
from __future__ import annotations

import fnmatch
import os
import sys
import time
from datetime import datetime, timezone

import pytest

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Avoid loading .env that might point at prod
os.environ.setdefault("ENVIRONMENT", "dev")

import config  # noqa: E402
from ledger import backpressure, clock  # noqa: E402

# 2024-03-10 12:00:00 UTC
BASE_MS = int(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeRedis:
    """Just enough of redis.asyncio.Redis (decode_responses=True) for the ledger."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        exp = self.expiry.get(key)
        if exp is not None and exp <= time.time():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def get(self, key):
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key, value, ex=None, nx=False):
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = time.time() + int(ex)
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        n = 0
        for k in keys:
            if self._alive(k):
                n += 1
            self.data.pop(k, None)
            self.expiry.pop(k, None)
        return n

    async def scan_iter(self, match=None, count=None):
        for k in list(self.data):
            if self._alive(k) and (match is None or fnmatch.fnmatchcase(k, match)):
                yield k

    async def ping(self):
        return True

    async def aclose(self):
        return None


class FrozenClock:
    def __init__(self, now: int):
        self.now = int(now)

    def __call__(self) -> int:
        return self.now

    def advance(self, *, days: float = 0, hours: float = 0, ms: int = 0) -> int:
        self.now += int(days * clock.MS_PER_DAY + hours * clock.MS_PER_HOUR + ms)
        return self.now


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """UTC ledger days, logs and user content under tmp_path."""
    monkeypatch.setattr(config, "LEDGER_TIMEZONE", "UTC")
    monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setattr(config, "USER_DATA_ROOT", tmp_path / "data")


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    """By default, make get_redis_or_none return None so tests don't need Redis."""
    async def _none():
        return None
    monkeypatch.setattr(backpressure, "get_redis_or_none", _none)


@pytest.fixture
def fake_redis(monkeypatch):
    r = FakeRedis()

    async def _get():
        return r
    monkeypatch.setattr(backpressure, "get_redis_or_none", _get)
    return r


@pytest.fixture
def frozen_clock(monkeypatch):
    fc = FrozenClock(BASE_MS)
    monkeypatch.setattr(clock, "now_ms", fc)
    return fc
