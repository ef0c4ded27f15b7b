"""Operator helper to change a ledger balance without the admin console.

Usage:
  python tools/adjust_points.py <HANDLE> add 10
  python tools/adjust_points.py <HANDLE> subtract 2.5
  python tools/adjust_points.py <HANDLE> set 0

Goes through the same code path as the admin API (rounding, clamping, audit).
"""

import asyncio
import sys


async def main():
    if len(sys.argv) != 4:
        print("Usage: python tools/adjust_points.py <HANDLE> <add|subtract|set> <AMOUNT>")
        return 2
    handle = sys.argv[1].strip().lower()
    action = sys.argv[2].lower().strip()
    try:
        amount = float(sys.argv[3])
    except ValueError:
        print("AMOUNT must be a number")
        return 2

    from dotenv import load_dotenv
    load_dotenv()

    from ledger.account_store import admin_adjust, as_number
    from ledger.backpressure import close_redis
    from ledger.errors import LedgerError

    try:
        points = await admin_adjust(handle, action, amount, actor="cli")
    except LedgerError as e:
        print(f"Failed: {e.message}")
        return 1
    finally:
        await close_redis()

    print(f"OK: {handle} points={as_number(points)}")
    return 0

if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
