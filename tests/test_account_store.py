"""Tests for the entitlement ledger (ledger/account_store.py).

Ledger days are UTC here (see conftest); the frozen clock starts at
2024-03-10 12:00 UTC.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

import config
from ledger import clock
from ledger.account_store import (
    CHECK_IN_COOLDOWN_MS,
    INITIAL_POINTS,
    REASON_NO_POINTS,
    REASON_NOT_LOGGED_IN,
    REASON_OFF,
    AccountLedger,
    admin_adjust,
    as_number,
    check_in,
    clamp_points,
    effective_access,
    get_account,
    get_status,
    redeem,
    reset_account,
    round_half,
    save_ledger,
    sweep_handle,
    toggle_access,
)
from ledger.codes_store import KIND_REDEEM, create_redeem_codes, get_code
from ledger.errors import (
    CodeUsedError,
    CooldownError,
    InsufficientPointsError,
    NotFoundError,
    ValidationError,
)
from ledger.keys import account_key
from ledger.purge import user_dir
from ledger.purge_sweep_loop import sweep_once
from ledger.redis_kv import kv_get_json
from ledger.users_store import create_user, get_user


async def _seed(handle: str, **overrides) -> AccountLedger:
    now = clock.now_ms()
    ledger = AccountLedger(
        handle=handle,
        points=float(INITIAL_POINTS),
        access_on=True,
        last_cost_applied_at=clock.ledger_midnight(now),
        created_at=now,
    )
    for k, v in overrides.items():
        setattr(ledger, k, v)
    await save_ledger(ledger)
    return ledger


async def _stored(handle: str) -> dict:
    return await kv_get_json(account_key(handle))


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestRounding:
    def test_round_half(self):
        assert round_half(0.24) == 0
        assert round_half(0.25) == 0.5
        assert round_half(1.75) == 2
        assert round_half(22.3) == 22.5

    def test_clamp_points_never_negative(self):
        assert clamp_points(-3) == 0
        assert clamp_points(-0.1) == 0

    def test_as_number(self):
        assert as_number(20.0) == 20 and isinstance(as_number(20.0), int)
        assert as_number(0.5) == 0.5


def test_legacy_check_in_date_fallback():
    ledger = AccountLedger("a", 1, True, 0, 0, last_check_in_date="2024-03-10")
    assert ledger.effective_last_check_in() == clock.utc_date_to_ms("2024-03-10")
    ledger.last_check_in_at = 123
    assert ledger.effective_last_check_in() == 123


# ---------------------------------------------------------------------------
# Initialization + daily cost accrual
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestAccrual:
    async def test_first_access_initializes(self, fake_redis, frozen_clock):
        status = await get_status("alice")
        assert status.points == INITIAL_POINTS
        assert status.access_on is True
        assert status.off_days == 0
        assert status.can_check_in_today is True
        assert status.next_check_in_at == frozen_clock.now
        assert status.purged is False

        stored = await _stored("alice")
        assert stored["points"] == 20
        assert stored["lastCostAppliedAt"] == clock.ledger_midnight(frozen_clock.now)

    async def test_same_day_is_free(self, fake_redis, frozen_clock):
        await get_status("alice")
        frozen_clock.advance(hours=11)  # 23:00
        assert (await get_status("alice")).points == 20

    async def test_crossing_midnight_costs_one(self, fake_redis, frozen_clock):
        await get_status("alice")
        frozen_clock.advance(hours=12)  # 00:00 next day
        assert (await get_status("alice")).points == 19

    async def test_idempotent_within_a_day(self, fake_redis, frozen_clock):
        await get_status("alice")
        frozen_clock.advance(days=1)
        first = await get_status("alice")
        second = await get_status("alice")
        frozen_clock.advance(hours=1)
        third = await get_status("alice")
        assert first.points == second.points == third.points == 19

    async def test_mark_advances_by_days_charged(self, fake_redis, frozen_clock):
        await get_status("alice")
        start_mark = (await _stored("alice"))["lastCostAppliedAt"]
        frozen_clock.advance(days=3)
        assert (await get_status("alice")).points == 17
        assert (await _stored("alice"))["lastCostAppliedAt"] == start_mark + 3 * clock.MS_PER_DAY

    async def test_dst_days_charge_once_each(self, fake_redis, frozen_clock, monkeypatch):
        # Europe/Berlin springs forward on 2024-03-31 (a 23h day) and falls back on 2024-10-27.
        monkeypatch.setattr(config, "LEDGER_TIMEZONE", "Europe/Berlin")
        berlin = ZoneInfo("Europe/Berlin")

        def local(*args) -> int:
            return int(datetime(*args, tzinfo=berlin).timestamp() * 1000)

        frozen_clock.now = local(2024, 3, 30, 12, 0)
        await get_status("alice")
        assert (await _stored("alice"))["lastCostAppliedAt"] == local(2024, 3, 30)

        frozen_clock.now = local(2024, 4, 2, 0, 30)
        assert (await get_status("alice")).points == 17
        assert (await _stored("alice"))["lastCostAppliedAt"] == local(2024, 4, 2)

        frozen_clock.now = local(2024, 10, 26, 12, 0)
        await get_status("alice")
        await admin_adjust("alice", "set", 10)
        frozen_clock.now = local(2024, 10, 28, 0, 30)
        assert (await get_status("alice")).points == 8
        assert (await _stored("alice"))["lastCostAppliedAt"] == local(2024, 10, 28)

    async def test_no_accrual_while_off(self, fake_redis, frozen_clock):
        await toggle_access("alice", False)
        frozen_clock.advance(days=5)
        status = await get_status("alice")
        assert status.points == 20
        assert status.access_on is False
        assert status.off_days == 5

    async def test_balance_floors_at_zero(self, fake_redis, frozen_clock):
        await _seed("alice", points=2.0)
        frozen_clock.advance(days=5)
        assert (await get_status("alice")).points == 0
        decision = await effective_access("alice")
        assert decision.allowed is False and decision.reason == REASON_NO_POINTS

    async def test_future_mark_is_clamped_without_charge(self, fake_redis, frozen_clock):
        today = clock.ledger_midnight(frozen_clock.now)
        await _seed("alice", last_cost_applied_at=today + 5 * clock.MS_PER_DAY)
        assert (await get_status("alice")).points == 20
        assert (await _stored("alice"))["lastCostAppliedAt"] == today


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestCheckIn:
    async def test_reward_and_cooldown(self, fake_redis, frozen_clock):
        res = await check_in("alice")
        assert res.points == 25
        assert res.last_check_in_at == frozen_clock.now
        assert res.next_check_in_at == frozen_clock.now + CHECK_IN_COOLDOWN_MS
        assert res.last_check_in_date == "2024-03-10"

        status = await get_status("alice")
        assert status.can_check_in_today is False
        assert status.next_check_in_at == res.next_check_in_at

    async def test_cooldown_reports_same_next_time(self, fake_redis, frozen_clock):
        res = await check_in("alice")
        with pytest.raises(CooldownError) as e1:
            await check_in("alice")
        frozen_clock.advance(hours=23)
        with pytest.raises(CooldownError) as e2:
            await check_in("alice")
        assert e1.value.next_check_in_at == e2.value.next_check_in_at == res.next_check_in_at
        assert e1.value.context == {"nextCheckInAt": res.next_check_in_at}
        assert (await get_status("alice")).points == 24  # one midnight crossed

    async def test_rolling_window_not_midnight(self, fake_redis, frozen_clock):
        await check_in("alice")
        frozen_clock.advance(hours=24)
        res = await check_in("alice")
        # 25 - 1 (one day accrued) + 5
        assert res.points == 29

    async def test_legacy_date_counts_as_utc_midnight(self, fake_redis, frozen_clock):
        await _seed("alice", last_check_in_date="2024-03-10")
        with pytest.raises(CooldownError) as e:
            await check_in("alice")
        assert e.value.next_check_in_at == clock.utc_date_to_ms("2024-03-10") + CHECK_IN_COOLDOWN_MS

    async def test_concurrent_check_ins_reward_once(self, fake_redis, frozen_clock):
        results = await asyncio.gather(*(check_in("alice") for _ in range(3)), return_exceptions=True)
        assert sum(1 for r in results if isinstance(r, CooldownError)) == 2
        assert (await get_status("alice")).points == 25


# ---------------------------------------------------------------------------
# Access toggle + gate
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestToggle:
    async def test_off_then_on_charges_fee(self, fake_redis, frozen_clock):
        off = await toggle_access("alice", False)
        assert off.access_on is False and off.points == 20
        assert (await _stored("alice"))["accessOffSince"] == frozen_clock.now

        on = await toggle_access("alice", True)
        assert on.access_on is True and on.points == 19
        assert (await _stored("alice"))["accessOffSince"] is None

    async def test_same_state_is_noop(self, fake_redis, frozen_clock):
        res = await toggle_access("alice", True)
        assert res.access_on is True and res.points == 20

    async def test_half_point_pays_partial_fee(self, fake_redis, frozen_clock):
        await _seed("alice", points=0.5, access_on=False, access_off_since=frozen_clock.now)
        res = await toggle_access("alice", True)
        assert res.access_on is True and res.points == 0

    async def test_zero_points_cannot_turn_on(self, fake_redis, frozen_clock):
        await _seed("alice", points=0.0, access_on=False, access_off_since=frozen_clock.now)
        with pytest.raises(InsufficientPointsError):
            await toggle_access("alice", True)
        stored = await _stored("alice")
        assert stored["accessOn"] is False and stored["points"] == 0

    @pytest.mark.parametrize("desired", ["true", 1, None])
    async def test_rejects_non_boolean(self, fake_redis, frozen_clock, desired):
        with pytest.raises(ValidationError):
            await toggle_access("alice", desired)

    async def test_effective_access_reasons(self, fake_redis, frozen_clock):
        assert (await effective_access(None)).reason == REASON_NOT_LOGGED_IN
        assert (await effective_access("alice")).allowed is True
        await toggle_access("alice", False)
        decision = await effective_access("alice")
        assert decision.allowed is False and decision.reason == REASON_OFF


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
class TestRedeem:
    async def test_redeem_credits_once(self, fake_redis, frozen_clock):
        [code] = await create_redeem_codes(points=10)
        res = await redeem("alice", code.code.lower())
        assert res.points == 30 and res.added_points == 10

        with pytest.raises(CodeUsedError):
            await redeem("alice", code.code)
        assert (await get_status("alice")).points == 30

        stored = await get_code(KIND_REDEEM, code.code)
        assert stored.used_by == "alice" and stored.used_at == frozen_clock.now

    async def test_unknown_and_empty(self, fake_redis, frozen_clock):
        with pytest.raises(NotFoundError):
            await redeem("alice", "NOSUCHCODE")
        with pytest.raises(ValidationError):
            await redeem("alice", "   ")
        with pytest.raises(ValidationError):
            await redeem("alice", None)

    async def test_concurrent_redeem_credits_exactly_once(self, fake_redis, frozen_clock):
        [code] = await create_redeem_codes(points=10)
        results = await asyncio.gather(
            *(redeem("alice", code.code) for _ in range(5)),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, CodeUsedError)) == 4
        assert (await get_status("alice")).points == 30


# ---------------------------------------------------------------------------
# Purge after 30 days off
# ---------------------------------------------------------------------------

async def _make_user_with_content(handle: str) -> None:
    await create_user(handle, name=handle.title(), password="hunter22")
    d = user_dir(handle)
    d.mkdir(parents=True)
    (d / "notes.txt").write_text("hello", encoding="utf-8")


@pytest.mark.asyncio
class TestPurge:
    async def test_not_yet_at_29_days(self, fake_redis, frozen_clock):
        await _make_user_with_content("alice")
        await toggle_access("alice", False)
        frozen_clock.advance(days=29)
        status = await get_status("alice")
        assert status.purged is False and status.points == 20
        assert await get_user("alice") is not None

    async def test_purge_after_31_days_then_noop(self, fake_redis, frozen_clock):
        await _make_user_with_content("alice")
        await toggle_access("alice", False)
        frozen_clock.advance(days=31)

        status = await get_status("alice")
        assert status.purged is True
        assert status.points == 0 and status.access_on is False
        assert await get_user("alice") is None
        assert not user_dir("alice").exists()

        stored = await _stored("alice")
        assert stored["accessOffSince"] == clock.ledger_midnight(frozen_clock.now)
        assert stored["lastCheckInAt"] is None

        again = await get_status("alice")
        assert again.purged is False and again.points == 0

    async def test_purge_without_identity_is_harmless(self, fake_redis, frozen_clock):
        await toggle_access("ghost", False)
        frozen_clock.advance(days=30)
        assert (await get_status("ghost")).purged is True

    async def test_end_to_end_scenario(self, fake_redis, frozen_clock):
        await _make_user_with_content("alice")
        assert (await get_status("alice")).points == 20
        frozen_clock.advance(days=3)
        assert (await get_status("alice")).points == 17
        await toggle_access("alice", False)
        frozen_clock.advance(days=30)
        decision = await effective_access("alice")
        assert decision.allowed is False and decision.reason == REASON_OFF
        assert await get_user("alice") is None
        assert (await get_account("alice")).points == 0
        with pytest.raises(InsufficientPointsError):
            await toggle_access("alice", True)

    async def test_sweep_reclaims_idle_accounts(self, fake_redis, frozen_clock):
        await _make_user_with_content("alice")
        await toggle_access("alice", False)
        await get_status("bob")
        frozen_clock.advance(days=31)
        assert await sweep_once() == 1
        assert await get_user("alice") is None
        # on the whole time: 31 days of cost, floored at 0
        assert (await get_account("bob")).points == 0
        assert await sweep_handle("nobody") is False
