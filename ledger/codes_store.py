"""Single-use code storage: registration invites and balance top-up codes.

Both kinds share one record shape and one lifecycle: created by an admin in a
bounded batch, consumed exactly once (used/usedBy/usedAt are set together and
never cleared), deletable only while unused. Used codes stay around as the
audit trail of who consumed what.

Keys:
- String: redeem:<CODE> -> JSON (points credited on redemption)
- String: invite:<CODE> -> JSON (optional expiresAt)
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any, Optional

from ledger import clock
from ledger.audit import audit_log
from ledger.backpressure import key_lock
from ledger.errors import (
    CodeExpiredError,
    CodeGenerationError,
    CodeUsedError,
    NotFoundError,
    ValidationError,
)
from ledger.keys import (
    INVITE_CODE_PREFIX,
    REDEEM_CODE_PREFIX,
    invite_key,
    normalize_code,
    redeem_key,
)
from ledger.prom import codes_created_total, codes_redeemed_total
from ledger.redis_kv import kv_del, kv_get_json, kv_keys, kv_set_json, kv_set_json_nx

logger = logging.getLogger("ledger.codes")

KIND_REDEEM = "redeem"
KIND_INVITE = "invite"

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 12

# Collision retry limits per kind.
REDEEM_MAX_ATTEMPTS = 10
INVITE_MAX_ATTEMPTS = 50

REDEEM_BATCH_MAX = 100
INVITE_BATCH_MAX = 200
INVITE_EXPIRY_MAX_DAYS = 365


@dataclass
class RedemptionCode:
    code: str
    kind: str
    used: bool = False
    used_by: Optional[str] = None
    used_at: Optional[int] = None
    created_at: int = 0
    points: Optional[int] = None       # redeem codes only
    expires_at: Optional[int] = None   # invite codes only; None = never

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at is not None and int(self.expires_at) <= int(now_ms)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "code": self.code,
            "used": bool(self.used),
            "usedBy": self.used_by,
            "usedAt": self.used_at,
            "createdAt": int(self.created_at),
        }
        if self.kind == KIND_REDEEM:
            d["points"] = int(self.points or 0)
        else:
            d["expiresAt"] = self.expires_at
        return d

    @classmethod
    def from_dict(cls, kind: str, d: dict[str, Any]) -> "RedemptionCode":
        expires = d.get("expiresAt")
        return cls(
            code=normalize_code(str(d.get("code") or "")),
            kind=kind,
            used=bool(d.get("used", False)),
            used_by=d.get("usedBy") or None,
            used_at=int(d["usedAt"]) if d.get("usedAt") is not None else None,
            created_at=int(d.get("createdAt") or 0),
            points=int(d.get("points") or 0) if kind == KIND_REDEEM else None,
            # 0 was never a real expiry; older records used it for "none".
            expires_at=int(expires) if expires else None,
        )


def _key(kind: str, code: str) -> str:
    if kind == KIND_REDEEM:
        return redeem_key(code)
    if kind == KIND_INVITE:
        return invite_key(code)
    raise ValueError(f"unknown code kind: {kind!r}")


def _prefix(kind: str) -> str:
    return REDEEM_CODE_PREFIX if kind == KIND_REDEEM else INVITE_CODE_PREFIX


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(int(length)))


async def _allocate(kind: str, build: Any, *, max_attempts: int) -> RedemptionCode:
    """Create one fresh code record, retrying on collision.

    SET NX makes the existence check and the write one step, so two batches
    running at once can never hand out the same code.
    """
    for _ in range(max_attempts):
        rc: RedemptionCode = build(generate_code())
        if await kv_set_json_nx(_key(kind, rc.code), rc.to_dict()):
            return rc
    logger.error("Code allocation exhausted %d attempts (kind=%s)", max_attempts, kind)
    raise CodeGenerationError("Could not allocate a unique code, try again later")


# ---------------------------------------------------------------------------
# Admin batch creation
# ---------------------------------------------------------------------------

async def create_redeem_codes(*, points: int, count: int = 1) -> list[RedemptionCode]:
    if not _is_int(points) or points <= 0:
        raise ValidationError("points must be a positive integer")
    if not _is_int(count) or count < 1 or count > REDEEM_BATCH_MAX:
        raise ValidationError(f"count must be between 1 and {REDEEM_BATCH_MAX}")

    out: list[RedemptionCode] = []
    for _ in range(count):
        now = clock.now_ms()
        rc = await _allocate(
            KIND_REDEEM,
            lambda c: RedemptionCode(code=c, kind=KIND_REDEEM, created_at=now, points=int(points)),
            max_attempts=REDEEM_MAX_ATTEMPTS,
        )
        out.append(rc)
    codes_created_total.labels(kind=KIND_REDEEM).inc(len(out))
    logger.info("Created %d redeem codes worth %d points", len(out), points)
    return out


async def create_invite_codes(*, count: int = 1, expires_in_days: float | None = None) -> list[RedemptionCode]:
    if not _is_int(count) or count < 1 or count > INVITE_BATCH_MAX:
        raise ValidationError(f"count must be between 1 and {INVITE_BATCH_MAX}")

    expires_at: Optional[int] = None
    if expires_in_days is not None:
        if isinstance(expires_in_days, bool) or not isinstance(expires_in_days, (int, float)):
            raise ValidationError("expiresInDays must be a number")
        # NaN fails every comparison, so test the allowed range rather than its complement.
        if not (1 <= expires_in_days <= INVITE_EXPIRY_MAX_DAYS):
            raise ValidationError(f"expiresInDays must be between 1 and {INVITE_EXPIRY_MAX_DAYS}")
        expires_at = clock.now_ms() + int(expires_in_days * clock.MS_PER_DAY)

    out: list[RedemptionCode] = []
    for _ in range(count):
        now = clock.now_ms()
        rc = await _allocate(
            KIND_INVITE,
            lambda c: RedemptionCode(code=c, kind=KIND_INVITE, created_at=now, expires_at=expires_at),
            max_attempts=INVITE_MAX_ATTEMPTS,
        )
        out.append(rc)
    codes_created_total.labels(kind=KIND_INVITE).inc(len(out))
    logger.info("Created %d invite codes (expires_at=%s)", len(out), expires_at)
    return out


# ---------------------------------------------------------------------------
# Lookup / listing / deletion
# ---------------------------------------------------------------------------

async def get_code(kind: str, code: str) -> RedemptionCode | None:
    if not normalize_code(code):
        return None
    raw = await kv_get_json(_key(kind, code))
    if not isinstance(raw, dict):
        return None
    return RedemptionCode.from_dict(kind, raw)


async def list_codes(kind: str) -> list[RedemptionCode]:
    """All codes of a kind, newest first."""
    out: list[RedemptionCode] = []
    for k in await kv_keys(_prefix(kind)):
        raw = await kv_get_json(k)
        if isinstance(raw, dict):
            out.append(RedemptionCode.from_dict(kind, raw))
    out.sort(key=lambda c: c.created_at, reverse=True)
    return out


async def delete_code(kind: str, code: str) -> None:
    key = _key(kind, code)
    async with key_lock(key):
        rc = await get_code(kind, code)
        if rc is None:
            raise NotFoundError("Code does not exist")
        if rc.used:
            raise CodeUsedError("Code was already used and is kept for audit")
        await kv_del(key)
    logger.info("Deleted unused %s code %s", kind, rc.code)


# ---------------------------------------------------------------------------
# Validation / consumption
# ---------------------------------------------------------------------------

def _check_usable(rc: RedemptionCode | None, now_ms: int) -> RedemptionCode:
    if rc is None:
        raise NotFoundError("Code does not exist or is no longer valid")
    if rc.used:
        raise CodeUsedError("This code has already been used")
    if rc.is_expired(now_ms):
        raise CodeExpiredError("This code has expired")
    return rc


async def validate_invite(code: str) -> RedemptionCode:
    """Return the invite if it can admit a new account, else raise why not."""
    return _check_usable(await get_code(KIND_INVITE, code), clock.now_ms())


async def is_invite_valid(code: str | None) -> bool:
    if not code or not isinstance(code, str):
        return False
    rc = await get_code(KIND_INVITE, code)
    return rc is not None and not rc.used and not rc.is_expired(clock.now_ms())


async def mark_used(kind: str, code: str, used_by: str) -> RedemptionCode:
    """Consume a code exactly once.

    The record is re-read under the code's lock right before the write, so of
    several concurrent callers only the first succeeds; the rest get
    CodeUsedError.
    """
    key = _key(kind, code)
    async with key_lock(key):
        now = clock.now_ms()
        rc = _check_usable(await get_code(kind, code), now)
        rc.used = True
        rc.used_by = used_by
        rc.used_at = now
        await kv_set_json(key, rc.to_dict())

    codes_redeemed_total.labels(kind=kind).inc()
    audit_log(f"{kind}_code_used", handle=used_by, fields={"code": rc.code, "points": rc.points})
    return rc


async def code_stats() -> dict[str, dict[str, int]]:
    out: dict[str, dict[str, int]] = {}
    for kind in (KIND_REDEEM, KIND_INVITE):
        codes = await list_codes(kind)
        used = sum(1 for c in codes if c.used)
        out[kind] = {"total": len(codes), "used": used, "unused": len(codes) - used}
    return out
