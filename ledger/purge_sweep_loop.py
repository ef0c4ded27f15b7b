# ledger/purge_sweep_loop.py
"""Optional background loop: apply accrual and due purges to every stored ledger.

Purges are lazy by default (they happen when a deactivated user is next
accessed), which means users who never come back are never reclaimed. Set
PURGE_SWEEP_INTERVAL_S > 0 to also sweep on a timer.
"""
from __future__ import annotations

import asyncio
import logging

import config
from ledger.account_store import sweep_handle
from ledger.keys import ACCOUNT_PREFIX
from ledger.redis_kv import kv_keys

logger = logging.getLogger("ledger.purge_sweep")


async def sweep_once() -> int:
    """One pass over account:*. Returns how many accounts were purged."""
    purged = 0
    for key in await kv_keys(ACCOUNT_PREFIX):
        handle = key[len(ACCOUNT_PREFIX):]
        try:
            if await sweep_handle(handle):
                purged += 1
        except Exception:
            logger.exception("Purge sweep failed for %s", handle)
    if purged:
        logger.info("Purge sweep reclaimed %d account(s)", purged)
    return purged


async def _loop(interval_s: int) -> None:
    logger.info("Purge sweep loop started (interval=%ss)", interval_s)
    while True:
        try:
            await sweep_once()
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Purge sweep tick error")
        await asyncio.sleep(interval_s)


def start_purge_sweep_loop() -> asyncio.Task | None:
    """Start the sweep if configured. Returns the task, or None when disabled."""
    interval = int(config.PURGE_SWEEP_INTERVAL_S or 0)
    if interval <= 0:
        logger.info("Purge sweep disabled; purges stay lazy")
        return None
    task = asyncio.create_task(_loop(interval))
    task.add_done_callback(
        lambda t: None if t.cancelled() else logger.warning("Purge sweep loop exited: %s", t.exception())
    )
    return task
