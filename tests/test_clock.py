"""Tests for ledger/clock.py (calendar math; no Redis)."""
from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import config
from ledger import clock

BASE_MS = int(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)
MIDNIGHT = BASE_MS - 12 * clock.MS_PER_HOUR  # 2024-03-10 00:00 UTC


class TestLedgerMidnight:
    def test_utc_midnight(self):
        assert clock.ledger_midnight(BASE_MS) == MIDNIGHT

    def test_midnight_is_fixed_point(self):
        assert clock.ledger_midnight(MIDNIGHT) == MIDNIGHT

    def test_last_ms_of_day(self):
        assert clock.ledger_midnight(MIDNIGHT + clock.MS_PER_DAY - 1) == MIDNIGHT

    def test_configured_zone(self, monkeypatch):
        # UTC+9, no DST: local midnight of 2024-03-10 is 15:00 UTC on the 9th
        monkeypatch.setattr(config, "LEDGER_TIMEZONE", "Asia/Tokyo")
        assert clock.ledger_midnight(BASE_MS) == MIDNIGHT - 9 * clock.MS_PER_HOUR

    def test_defaults_to_now(self, frozen_clock):
        assert clock.ledger_midnight() == MIDNIGHT


class TestLedgerDaysBetween:
    def test_counts_calendar_days(self):
        assert clock.ledger_days_between(MIDNIGHT, MIDNIGHT + clock.MS_PER_DAY - 1) == 0
        assert clock.ledger_days_between(MIDNIGHT, MIDNIGHT + clock.MS_PER_DAY) == 1
        # 23:59 to 00:01 is a new day
        assert clock.ledger_days_between(MIDNIGHT - 60_000, MIDNIGHT + 60_000) == 1
        assert clock.ledger_days_between(MIDNIGHT + clock.MS_PER_DAY, MIDNIGHT) == -1

    def test_short_dst_day_counts_as_one(self, monkeypatch):
        monkeypatch.setattr(config, "LEDGER_TIMEZONE", "Europe/Berlin")
        berlin = ZoneInfo("Europe/Berlin")
        mar31 = int(datetime(2024, 3, 31, tzinfo=berlin).timestamp() * 1000)
        apr1 = int(datetime(2024, 4, 1, tzinfo=berlin).timestamp() * 1000)
        assert apr1 - mar31 == 23 * clock.MS_PER_HOUR
        assert clock.ledger_days_between(mar31, apr1) == 1
        assert clock.ledger_midnight(apr1 + 60_000) == apr1

    def test_long_dst_day_counts_as_one(self, monkeypatch):
        monkeypatch.setattr(config, "LEDGER_TIMEZONE", "Europe/Berlin")
        berlin = ZoneInfo("Europe/Berlin")
        oct27 = int(datetime(2024, 10, 27, tzinfo=berlin).timestamp() * 1000)
        oct28 = int(datetime(2024, 10, 28, tzinfo=berlin).timestamp() * 1000)
        assert oct28 - oct27 == 25 * clock.MS_PER_HOUR
        assert clock.ledger_days_between(oct27, oct28 - 1) == 0
        assert clock.ledger_days_between(oct27, oct28) == 1


def test_day_string():
    assert clock.day_string(BASE_MS) == "2024-03-10"


class TestClientDay:
    def test_zero_offset(self):
        assert clock.day_string_with_offset(BASE_MS, 0) == "2024-03-10"

    def test_east_of_utc_rolls_forward(self):
        # getTimezoneOffset() is -780 for UTC+13; 12:00 UTC is 01:00 next day
        assert clock.day_string_with_offset(BASE_MS, -780) == "2024-03-11"

    def test_west_of_utc_rolls_back(self):
        assert clock.day_string_with_offset(BASE_MS, 780) == "2024-03-09"

    def test_garbage_offset_is_utc(self):
        assert clock.day_string_with_offset(BASE_MS, "nope") == "2024-03-10"
        assert clock.day_string_with_offset(BASE_MS, None) == "2024-03-10"


class TestParseTzOffset:
    def test_plain(self):
        assert clock.parse_tz_offset("-480") == -480
        assert clock.parse_tz_offset("300") == 300

    def test_leading_integer_only(self):
        assert clock.parse_tz_offset("60.5") == 60
        assert clock.parse_tz_offset(" 30px") == 30

    def test_unusable(self):
        assert clock.parse_tz_offset(None) == 0
        assert clock.parse_tz_offset("") == 0
        assert clock.parse_tz_offset("abc") == 0


def test_utc_date_to_ms():
    assert clock.utc_date_to_ms("2024-03-10") == MIDNIGHT
    assert clock.utc_date_to_ms("") is None
    assert clock.utc_date_to_ms("10/03/2024") is None
