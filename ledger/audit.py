# ledger/audit.py
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import config

logger = logging.getLogger("ledger.audit")

_AUDIT_LOCK = threading.Lock()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _default_log_dir() -> Path:
    return Path(config.LOG_DIR)


def _rotate_if_needed(path: Path, *, max_bytes: int = 2_000_000, backups: int = 5) -> None:
    """
    Very small manual log rotation for audit.log (JSONL).
    Keeps audit logs from growing forever.
    """
    try:
        if not path.exists():
            return

        size = path.stat().st_size
        if size < max_bytes:
            return

        # Shift: audit.log.4 -> .5, ... audit.log -> .1
        for i in range(backups, 0, -1):
            src = path.with_suffix(path.suffix + f".{i}")
            dst = path.with_suffix(path.suffix + f".{i+1}")
            if src.exists():
                if i == backups:
                    src.unlink(missing_ok=True)
                else:
                    src.replace(dst)

        path.replace(path.with_suffix(path.suffix + ".1"))

    except OSError:
        logger.exception("Failed rotating audit log")


def audit_log(
    event: str,
    *,
    handle: Optional[str] = None,
    actor: Optional[str] = None,
    result: Optional[str] = None,
    reason: Optional[str] = None,
    fields: Optional[dict[str, Any]] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Append one JSON event per line to <LOG_DIR>/audit.log.

    Used for every balance mutation that is not daily accrual (check-in,
    redemption, admin adjustments), code consumption, and purges.
    Never raises.
    """
    try:
        payload: dict[str, Any] = {"ts": _utc_now_iso(), "event": str(event)}

        if handle is not None:
            payload["handle"] = str(handle)
        if actor is not None:
            payload["actor"] = str(actor)
        if result is not None:
            payload["result"] = str(result)
        if reason is not None:
            payload["reason"] = str(reason)

        if fields:
            for k, v in fields.items():
                payload[str(k)] = v

        target_dir = log_dir or _default_log_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / "audit.log"

        with _AUDIT_LOCK:
            _rotate_if_needed(path)
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")

    except Exception:
        logger.exception("Failed to write audit log event=%s", event)
