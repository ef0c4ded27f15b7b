"""Irreversible deletion of a user's identity record and content directory.

Purges run as a side effect of unrelated ledger reads (status checks, the
page gate), so purge_user_data() logs failures instead of raising. Purging
a handle that is already gone is a no-op.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path

import config
from ledger.audit import audit_log
from ledger.prom import purges_total
from ledger.users_store import delete_user

log = logging.getLogger("ledger.purge")


def user_dir(handle: str) -> Path:
    """Content root for a handle. Rejects anything that would escape USER_DATA_ROOT."""
    h = str(handle or "")
    if not h or "/" in h or "\\" in h or h in {".", ".."}:
        raise ValueError(f"unsafe handle for a directory name: {handle!r}")
    return Path(config.USER_DATA_ROOT) / h


def _rmtree(path: Path) -> bool:
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


async def delete_user_content(handle: str) -> bool:
    """Remove the content directory tree. Returns True if something was deleted.

    Raises on failure; purge_user_data() is the non-raising variant.
    """
    return await asyncio.to_thread(_rmtree, user_dir(handle))


async def purge_user_data(handle: str) -> dict:
    """Delete identity + content for handle. Never raises.

    Returns a summary of what was removed.
    """
    summary = {"identity_deleted": False, "content_deleted": False}

    try:
        summary["identity_deleted"] = await delete_user(handle)
    except Exception:
        log.warning("Purge: failed deleting identity record for %s", handle, exc_info=True)

    try:
        summary["content_deleted"] = await delete_user_content(handle)
    except Exception:
        log.warning("Purge: failed deleting content directory for %s", handle, exc_info=True)

    purges_total.inc()
    audit_log("account_purged", handle=handle, fields=summary)
    log.info("Purged user data for %s: %s", handle, summary)
    return summary


# ---------------------------------------------------------------------------
# Storage size helpers (admin listing)
# ---------------------------------------------------------------------------

def directory_size(path: Path | str) -> int:
    total = 0
    p = Path(path)
    if not p.exists():
        return 0
    if p.is_file():
        return p.stat().st_size
    for root, _dirs, files in os.walk(p):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except OSError:
                # file vanished mid-walk
                continue
    return total


async def user_storage_size(handle: str) -> int:
    try:
        return await asyncio.to_thread(directory_size, user_dir(handle))
    except (OSError, ValueError):
        log.warning("Could not size content directory for %s", handle, exc_info=True)
        return 0


def format_bytes(n: int) -> str:
    if n <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    v = float(n)
    i = 0
    while v >= 1024 and i < len(units) - 1:
        v /= 1024
        i += 1
    return f"{round(v, 2):g} {units[i]}"
