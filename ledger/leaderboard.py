"""Points leaderboard.

Ranks every enabled identity by ledger balance (desc), ties broken by handle
(asc). Computed from a scan of user:* on each request; no sorted-set index is
kept because balances change lazily (accrual happens on read).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ledger.account_store import get_or_init
from ledger.users_store import get_user, list_user_handles

log = logging.getLogger("ledger.leaderboard")

LEADERBOARD_LIMIT = 50


@dataclass(frozen=True)
class LeaderboardEntry:
    handle: str
    name: str
    points: float


@dataclass(frozen=True)
class LeaderboardResult:
    total: int
    my_rank: Optional[int]          # 1-based; None if the caller is not ranked
    my_points: float
    entries: list[LeaderboardEntry] = field(default_factory=list)


def rank_entries(rows: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
    return sorted(rows, key=lambda r: (-float(r.points or 0), r.handle))


async def get_leaderboard(my_handle: str, *, limit: int = LEADERBOARD_LIMIT) -> LeaderboardResult:
    rows: list[LeaderboardEntry] = []
    for handle in await list_user_handles():
        user = await get_user(handle)
        if user is None:
            continue
        # Banned users stay out of the rankings
        if user.get("enabled") is False:
            continue
        ledger = await get_or_init(handle)
        rows.append(
            LeaderboardEntry(
                handle=handle,
                name=str(user.get("name") or handle),
                points=float(ledger.points or 0),
            )
        )

    ranked = rank_entries(rows)
    my_rank: Optional[int] = None
    for i, row in enumerate(ranked):
        if row.handle == my_handle:
            my_rank = i + 1
            break

    mine = await get_or_init(my_handle)
    return LeaderboardResult(
        total=len(ranked),
        my_rank=my_rank,
        my_points=float(mine.points or 0),
        entries=ranked[: max(0, int(limit))],
    )
