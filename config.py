import logging
import os
import sys
from pathlib import Path

_config_log = logging.getLogger("config")


def _as_bool(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_int(name: str, default: int, *, min_value: int = 0) -> int:
    try:
        v = int(str(os.getenv(name, str(default))).strip())
    except ValueError:
        v = default
    return max(min_value, v)


# ---- Environment ----
ENVIRONMENT = os.getenv("ENVIRONMENT", "prod").strip().lower()
APP_NAME = os.getenv("APP_NAME", "entitlement-ledger")

# ---- HTTP ----
HOST = os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0"
PORT = _as_int("PORT", 8080, min_value=1)

# Header the upstream session layer sets to the resolved, authenticated handle.
REMOTE_USER_HEADER = os.getenv("REMOTE_USER_HEADER", "X-Remote-User").strip() or "X-Remote-User"

# ---- Storage ----
# Per-user content directories live under USER_DATA_ROOT/<handle>.
USER_DATA_ROOT = Path(os.getenv("USER_DATA_ROOT", "./data")).expanduser()

# ---- Ledger calendar ----
# IANA zone used for daily cost accrual day boundaries. Empty = server local time.
# Days are counted by calendar date, so DST transitions still charge once per day.
# Client-facing calendar strings always use the X-TZ-Offset request header instead.
LEDGER_TIMEZONE = (os.getenv("LEDGER_TIMEZONE") or "").strip()

# Optional background purge sweep. 0 keeps purges lazy (only on access).
PURGE_SWEEP_INTERVAL_S = _as_int("PURGE_SWEEP_INTERVAL_S", 0)

# ---- Admin console ----
ADMIN_USERNAME = (os.getenv("ADMIN_USERNAME") or "admin").strip()
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD") or "changeme"
ADMIN_SESSION_TTL_S = _as_int("ADMIN_SESSION_TTL_S", 12 * 3600, min_value=60)

# ---- Logging ----
LOG_DIR = Path(os.getenv("LOG_DIR", "./logs")).expanduser()


def redis_url() -> str:
    # Hosting providers expose the Redis URL under different names.
    url = (
        (os.getenv("REDIS_URL") or "").strip()
        or (os.getenv("REDIS_PRIVATE_URL") or "").strip()
        or (os.getenv("REDIS_PUBLIC_URL") or "").strip()
    )
    if not url:
        raise RuntimeError("Redis URL is missing. Set REDIS_URL (or REDIS_PRIVATE_URL).")
    return url


# ---------------------------------------------------------------------------
# Startup validation
# ---------------------------------------------------------------------------

def validate_config() -> None:
    """Check for required and recommended environment variables.

    Called by server.py before the app starts. In production, missing critical
    vars cause a hard exit so the problem is obvious.
    """
    is_prod = ENVIRONMENT != "dev"
    errors: list[str] = []
    warnings: list[str] = []

    try:
        redis_url()
    except RuntimeError as e:
        errors.append(str(e))

    if ADMIN_PASSWORD == "changeme":
        msg = "ADMIN_PASSWORD is the default 'changeme'. Set a real admin password."
        if is_prod:
            errors.append(msg)
        else:
            warnings.append(msg)

    if LEDGER_TIMEZONE:
        try:
            from zoneinfo import ZoneInfo

            ZoneInfo(LEDGER_TIMEZONE)
        except Exception:
            errors.append(f"LEDGER_TIMEZONE={LEDGER_TIMEZONE!r} is not a known IANA time zone.")

    for w in warnings:
        _config_log.warning("CONFIG WARNING: %s", w)

    if errors:
        for e in errors:
            _config_log.critical("CONFIG ERROR: %s", e)
        if is_prod:
            sys.exit(1)
