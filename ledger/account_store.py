"""Per-handle entitlement ledger.

Record (account:<handle>, JSON, epoch-ms timestamps):
  points               balance, multiples of 0.5, never negative
  accessOn             daily cost accrues only while on
  lastCostAppliedAt    ledger-day boundary up to which costs were deducted
  lastCheckInAt        last successful check-in (rolling 24h cooldown)
  lastCheckInDate      legacy YYYY-MM-DD check-in marker, read for old records
  accessOffSince       set on every on->off transition, cleared on off->on
  createdAt

Economy rules:
- New ledgers start with 20 points, access on.
- Each whole ledger day elapsed while on costs 1 point. Costs are applied
  lazily on the next access and the high-water mark advances by exactly the
  number of days charged, so repeated calls within a day are no-ops.
- Check-in: +5, then locked for 24h from that instant (not until midnight).
- Turning access back on costs a 1 point activation fee.
- 30 days continuously off purges the identity + content and zeroes the ledger.

Every read-modify-write below runs under the handle's key lock.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from ledger import clock
from ledger.audit import audit_log
from ledger.backpressure import key_lock
from ledger.codes_store import KIND_REDEEM, mark_used
from ledger.errors import (
    CooldownError,
    InsufficientPointsError,
    NotFoundError,
    ValidationError,
)
from ledger.keys import account_key, normalize_code
from ledger.prom import daily_cost_days_total, ledger_ops_total
from ledger.purge import purge_user_data
from ledger.redis_kv import kv_get_json, kv_set_json

logger = logging.getLogger("ledger.account")

INITIAL_POINTS = 20
DAILY_COST = 1
CHECK_IN_REWARD = 5
ACTIVATION_FEE = 1
CHECK_IN_COOLDOWN_MS = 24 * clock.MS_PER_HOUR
PURGE_AFTER_DAYS = 30
PURGE_AFTER_MS = PURGE_AFTER_DAYS * clock.MS_PER_DAY

ADJUST_ACTIONS = ("add", "subtract", "set")
ADJUST_AMOUNT_MAX = 1_000_000_000

# Reasons returned by effective_access()
REASON_NOT_LOGGED_IN = "NOT_LOGGED_IN"
REASON_OFF = "OFF"
REASON_NO_POINTS = "NO_POINTS"


def round_half(x: float) -> float:
    """Round to the nearest 0.5, halves away from zero on the positive side."""
    return math.floor(float(x) * 2 + 0.5) / 2


def clamp_points(x: float) -> float:
    return max(0.0, round_half(x))


def as_number(x: float) -> int | float:
    # 20.0 -> 20 so stored and returned balances look like the numbers users see
    f = float(x)
    return int(f) if f.is_integer() else f


@dataclass
class AccountLedger:
    handle: str
    points: float
    access_on: bool
    last_cost_applied_at: int
    created_at: int
    last_check_in_at: Optional[int] = None
    access_off_since: Optional[int] = None
    last_check_in_date: str = ""

    def effective_last_check_in(self) -> Optional[int]:
        """lastCheckInAt, falling back to the legacy date read as UTC midnight."""
        if self.last_check_in_at is not None:
            return int(self.last_check_in_at)
        return clock.utc_date_to_ms(self.last_check_in_date)

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "points": as_number(self.points),
            "accessOn": bool(self.access_on),
            "lastCostAppliedAt": int(self.last_cost_applied_at),
            "lastCheckInDate": self.last_check_in_date or "",
            "lastCheckInAt": self.last_check_in_at,
            "accessOffSince": self.access_off_since,
            "createdAt": int(self.created_at),
        }

    @classmethod
    def from_dict(cls, handle: str, d: dict[str, Any]) -> "AccountLedger":
        created = int(d.get("createdAt") or clock.now_ms())
        last_applied = d.get("lastCostAppliedAt")
        return cls(
            handle=str(d.get("handle") or handle),
            points=float(d.get("points") or 0),
            access_on=d.get("accessOn") is not False,
            last_cost_applied_at=int(last_applied) if last_applied else clock.ledger_midnight(created),
            created_at=created,
            last_check_in_at=int(d["lastCheckInAt"]) if d.get("lastCheckInAt") is not None else None,
            access_off_since=int(d["accessOffSince"]) if d.get("accessOffSince") else None,
            last_check_in_date=str(d.get("lastCheckInDate") or ""),
        )


@dataclass(frozen=True)
class AccountStatus:
    handle: str
    points: float
    access_on: bool
    off_days: int
    can_check_in_today: bool
    next_check_in_at: int
    purged: bool


@dataclass(frozen=True)
class CheckInResult:
    points: float
    last_check_in_at: int
    last_check_in_date: str
    next_check_in_at: int


@dataclass(frozen=True)
class ToggleResult:
    access_on: bool
    points: float


@dataclass(frozen=True)
class RedeemResult:
    points: float
    added_points: int


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str = ""


def _count(op: str, status: str) -> None:
    ledger_ops_total.labels(op=op, status=status).inc()


def new_ledger(handle: str, now_ms: int | None = None) -> AccountLedger:
    now = clock.now_ms() if now_ms is None else int(now_ms)
    return AccountLedger(
        handle=handle,
        points=float(INITIAL_POINTS),
        access_on=True,
        last_cost_applied_at=clock.ledger_midnight(now),
        created_at=now,
    )


# ---------------------------------------------------------------------------
# Persistence (callers hold the handle lock)
# ---------------------------------------------------------------------------

async def _load(handle: str) -> AccountLedger | None:
    raw = await kv_get_json(account_key(handle))
    if not isinstance(raw, dict):
        return None
    return AccountLedger.from_dict(handle, raw)


async def save_ledger(ledger: AccountLedger) -> None:
    await kv_set_json(account_key(ledger.handle), ledger.to_dict())


async def _load_or_init(handle: str) -> AccountLedger:
    existing = await _load(handle)
    if existing is not None:
        return existing
    ledger = new_ledger(handle)
    await save_ledger(ledger)
    logger.info("Initialized ledger for %s with %d points", handle, INITIAL_POINTS)
    return ledger


async def get_or_init(handle: str) -> AccountLedger:
    """Return the ledger, creating the default one on first access."""
    async with key_lock(account_key(handle)):
        return await _load_or_init(handle)


async def get_account(handle: str) -> AccountLedger | None:
    """Read without creating (admin listings)."""
    return await _load(handle)


# ---------------------------------------------------------------------------
# Daily costs + purge
# ---------------------------------------------------------------------------

async def apply_daily_costs(ledger: AccountLedger) -> tuple[AccountLedger, bool]:
    """Charge every whole ledger day since lastCostAppliedAt, then enforce the purge window.

    Returns (ledger, purged). The caller must hold the handle lock.
    """
    now = clock.now_ms()
    now_mid = clock.ledger_midnight(now)
    applied_from = int(ledger.last_cost_applied_at or clock.ledger_midnight(ledger.created_at or now))

    if applied_from > now_mid:
        # Clock moved backwards (or a bad record): pull the mark back to today.
        ledger.last_cost_applied_at = now_mid
        await save_ledger(ledger)
        logger.warning("Ledger %s had a future cost mark; clamped to today", ledger.handle)
        return ledger, False

    days = clock.ledger_days_between(applied_from, now_mid)
    if days > 0:
        rate = DAILY_COST if ledger.access_on else 0
        ledger.points = clamp_points(ledger.points - days * rate)
        ledger.last_cost_applied_at = now_mid
        await save_ledger(ledger)
        daily_cost_days_total.inc(days)
        logger.debug("Applied %d day(s) to %s (rate=%d) -> %s", days, ledger.handle, rate, ledger.points)

    purged = False
    if (
        not ledger.access_on
        and ledger.access_off_since
        and now - int(ledger.access_off_since) >= PURGE_AFTER_MS
    ):
        await purge_user_data(ledger.handle)
        ledger.points = 0.0
        ledger.access_on = False
        ledger.access_off_since = now_mid
        ledger.last_cost_applied_at = now_mid
        ledger.last_check_in_at = None
        ledger.last_check_in_date = ""
        await save_ledger(ledger)
        purged = True
        logger.info("Ledger %s reset after purge", ledger.handle)

    return ledger, purged


async def _load_current(handle: str) -> tuple[AccountLedger, bool]:
    ledger = await _load_or_init(handle)
    return await apply_daily_costs(ledger)


# ---------------------------------------------------------------------------
# User-facing operations
# ---------------------------------------------------------------------------

async def get_status(handle: str) -> AccountStatus:
    async with key_lock(account_key(handle)):
        ledger, purged = await _load_current(handle)

    now = clock.now_ms()
    off_days = 0
    if not ledger.access_on and ledger.access_off_since:
        off_days = clock.ledger_days_between(ledger.access_off_since, now)

    last = ledger.effective_last_check_in()
    can_check_in = last is None or now - last >= CHECK_IN_COOLDOWN_MS
    next_at = now if last is None else last + CHECK_IN_COOLDOWN_MS

    _count("status", "ok")
    return AccountStatus(
        handle=handle,
        points=ledger.points,
        access_on=ledger.access_on,
        off_days=off_days,
        can_check_in_today=can_check_in,
        next_check_in_at=next_at,
        purged=purged,
    )


async def check_in(handle: str) -> CheckInResult:
    async with key_lock(account_key(handle)):
        ledger, _ = await _load_current(handle)

        now = clock.now_ms()
        last = ledger.effective_last_check_in()
        if last is not None and now - last < CHECK_IN_COOLDOWN_MS:
            _count("checkin", "cooldown")
            raise CooldownError(last + CHECK_IN_COOLDOWN_MS)

        ledger.points = round_half(ledger.points + CHECK_IN_REWARD)
        ledger.last_check_in_at = now
        ledger.last_check_in_date = clock.day_string(now)
        await save_ledger(ledger)

    _count("checkin", "ok")
    audit_log("check_in", handle=handle, fields={"points": as_number(ledger.points)})
    return CheckInResult(
        points=ledger.points,
        last_check_in_at=now,
        last_check_in_date=ledger.last_check_in_date,
        next_check_in_at=now + CHECK_IN_COOLDOWN_MS,
    )


async def toggle_access(handle: str, desired: Any) -> ToggleResult:
    if not isinstance(desired, bool):
        raise ValidationError("accessOn must be a boolean")

    async with key_lock(account_key(handle)):
        ledger, _ = await _load_current(handle)

        if ledger.access_on != desired:
            if desired:
                # Any positive balance may pay the fee; a partial fee leaves 0.
                if ledger.points <= 0:
                    _count("toggle", "insufficient")
                    raise InsufficientPointsError(
                        f"Not enough points to turn access on (fee is {ACTIVATION_FEE})",
                        points=as_number(ledger.points),
                        required=ACTIVATION_FEE,
                    )
                ledger.points = clamp_points(ledger.points - ACTIVATION_FEE)
                ledger.access_on = True
                ledger.access_off_since = None
            else:
                ledger.access_on = False
                ledger.access_off_since = clock.now_ms()
            await save_ledger(ledger)
            logger.info("Access for %s -> %s (points=%s)", handle, desired, ledger.points)

    _count("toggle", "ok")
    return ToggleResult(access_on=ledger.access_on, points=ledger.points)


async def redeem(handle: str, code: Any) -> RedeemResult:
    """Consume a redeem code and credit its value.

    The code is marked used before the ledger is credited. If the process dies
    between the two writes the code is spent without a credit; that window is
    accepted (admins can see usedBy/usedAt and compensate).
    """
    if not isinstance(code, str) or not normalize_code(code):
        raise ValidationError("Please enter a redeem code")

    rc = await mark_used(KIND_REDEEM, code, handle)
    added = int(rc.points or 0)

    async with key_lock(account_key(handle)):
        ledger, _ = await _load_current(handle)
        ledger.points = round_half(ledger.points + added)
        await save_ledger(ledger)

    _count("redeem", "ok")
    audit_log("redeem", handle=handle, fields={"code": rc.code, "added": added, "points": as_number(ledger.points)})
    return RedeemResult(points=ledger.points, added_points=added)


async def effective_access(handle: str | None) -> AccessDecision:
    """Gate for the main experience; called on every gated request."""
    if not handle:
        return AccessDecision(False, REASON_NOT_LOGGED_IN)
    async with key_lock(account_key(handle)):
        ledger, _ = await _load_current(handle)
    if not ledger.access_on:
        return AccessDecision(False, REASON_OFF)
    if ledger.points <= 0:
        return AccessDecision(False, REASON_NO_POINTS)
    return AccessDecision(True)


# ---------------------------------------------------------------------------
# Admin operations
# ---------------------------------------------------------------------------

async def admin_adjust(handle: str, action: Any, amount: Any, *, actor: str | None = None) -> float:
    """Directly add/subtract/set a balance. Does not touch accrual timing."""
    if action not in ADJUST_ACTIONS:
        raise ValidationError("action must be one of add, subtract, set")
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or not math.isfinite(amount):
        raise ValidationError("amount must be a finite number")
    if not (0 <= amount <= ADJUST_AMOUNT_MAX):
        raise ValidationError(f"amount must be between 0 and {ADJUST_AMOUNT_MAX}")

    async with key_lock(account_key(handle)):
        ledger = await _load(handle)
        if ledger is None:
            raise NotFoundError("Account does not exist")

        before = ledger.points
        if action == "add":
            new_points = before + amount
        elif action == "subtract":
            new_points = max(0.0, before - amount)
        else:
            new_points = float(amount)
        ledger.points = clamp_points(new_points)
        await save_ledger(ledger)

    _count("admin_adjust", "ok")
    audit_log(
        "admin_adjust_points",
        handle=handle,
        actor=actor,
        fields={"action": action, "amount": amount, "before": as_number(before), "after": as_number(ledger.points)},
    )
    return ledger.points


async def reset_account(handle: str, *, actor: str | None = None) -> bool:
    """Zero and deactivate a ledger (admin "delete user data"). Returns False if absent."""
    async with key_lock(account_key(handle)):
        ledger = await _load(handle)
        if ledger is None:
            return False
        ledger.points = 0.0
        if ledger.access_on or not ledger.access_off_since:
            ledger.access_off_since = clock.now_ms()
        ledger.access_on = False
        ledger.last_check_in_at = None
        ledger.last_check_in_date = ""
        await save_ledger(ledger)

    audit_log("admin_reset_account", handle=handle, actor=actor)
    return True


async def sweep_handle(handle: str) -> bool:
    """Apply costs (and a due purge) for one stored ledger. Returns True if it purged."""
    async with key_lock(account_key(handle)):
        ledger = await _load(handle)
        if ledger is None:
            return False
        _, purged = await apply_daily_costs(ledger)
    return purged
