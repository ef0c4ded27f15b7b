"""Operator helper to mint redeem or invite codes in bulk.

Usage:
  python tools/make_codes.py redeem <POINTS> [COUNT]
  python tools/make_codes.py invite [COUNT] [EXPIRES_IN_DAYS]

Prints one code per line so the output can be piped into a file.
"""

import asyncio
import sys


def _usage():
    print("Usage: python tools/make_codes.py redeem <POINTS> [COUNT]")
    print("       python tools/make_codes.py invite [COUNT] [EXPIRES_IN_DAYS]")
    return 2


async def main():
    if len(sys.argv) < 2:
        return _usage()
    kind = sys.argv[1].lower().strip()
    args = sys.argv[2:]

    from dotenv import load_dotenv
    load_dotenv()

    from ledger.backpressure import close_redis
    from ledger.codes_store import create_invite_codes, create_redeem_codes
    from ledger.errors import LedgerError

    try:
        if kind == "redeem":
            if not 1 <= len(args) <= 2:
                return _usage()
            points = int(args[0])
            count = int(args[1]) if len(args) > 1 else 1
            codes = await create_redeem_codes(points=points, count=count)
        elif kind == "invite":
            if len(args) > 2:
                return _usage()
            count = int(args[0]) if args else 1
            days = float(args[1]) if len(args) > 1 else None
            codes = await create_invite_codes(count=count, expires_in_days=days)
        else:
            return _usage()
    except ValueError:
        print("Numeric arguments expected")
        return 2
    except LedgerError as e:
        print(f"Failed: {e.message}")
        return 1
    finally:
        await close_redis()

    for c in codes:
        print(c.code)
    return 0

if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
