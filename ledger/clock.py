"""Clock and calendar helpers.

All instants are integer epoch milliseconds (the stored record format).

Two notions of "day" coexist on purpose:
- ledger days: cost accrual boundaries, in config.LEDGER_TIMEZONE (server local
  time when unset);
- client days: presentation only, derived from the X-TZ-Offset header.
"""
from __future__ import annotations

import re
import time
from datetime import datetime, timezone, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

import config

MS_PER_DAY = 24 * 60 * 60 * 1000
MS_PER_HOUR = 60 * 60 * 1000

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def now_ms() -> int:
    return int(time.time() * 1000)


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def _ledger_dt(ts_ms: int) -> datetime:
    name = (getattr(config, "LEDGER_TIMEZONE", "") or "").strip()
    if name:
        return datetime.fromtimestamp(ts_ms / 1000, _zone(name))
    # Naive local time; .timestamp() on a naive datetime reads it back as local.
    return datetime.fromtimestamp(ts_ms / 1000)


def ledger_midnight(ts_ms: int | None = None) -> int:
    """Start of the ledger day containing ts_ms (default: now)."""
    dt = _ledger_dt(now_ms() if ts_ms is None else int(ts_ms))
    mid = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(mid.timestamp() * 1000)


def ledger_days_between(from_ms: int, to_ms: int) -> int:
    """Ledger-calendar days from the day of from_ms to the day of to_ms.

    Counts dates, not 24h blocks, so 23h and 25h DST days still count as one.
    """
    return (_ledger_dt(int(to_ms)).date() - _ledger_dt(int(from_ms)).date()).days


def day_string(ts_ms: int) -> str:
    """YYYY-MM-DD of ts_ms in the ledger zone."""
    return _ledger_dt(int(ts_ms)).strftime("%Y-%m-%d")


def day_string_with_offset(ts_ms: int, offset_minutes: int | float | None) -> str:
    """YYYY-MM-DD of ts_ms on the client's wall clock.

    offset_minutes follows Date.getTimezoneOffset(): positive means west of UTC,
    so local = utc - offset.
    """
    try:
        off = float(offset_minutes or 0)
    except (TypeError, ValueError):
        off = 0.0
    if off != off or off in (float("inf"), float("-inf")):
        off = 0.0
    shifted = datetime.fromtimestamp(int(ts_ms) / 1000, timezone.utc) - timedelta(minutes=off)
    return shifted.strftime("%Y-%m-%d")


def parse_tz_offset(raw: str | None) -> int:
    """Parse the X-TZ-Offset header value; anything unusable is 0."""
    if raw is None:
        return 0
    m = _LEADING_INT.match(str(raw))
    return int(m.group(1)) if m else 0


def utc_date_to_ms(day: str | None) -> int | None:
    """'YYYY-MM-DD' -> UTC midnight in ms, or None if unparseable."""
    s = (day or "").strip()
    if not s:
        return None
    try:
        dt = datetime.strptime(s, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return int(dt.timestamp() * 1000)
