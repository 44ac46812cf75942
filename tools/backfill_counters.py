"""Add missing counter fields (score, referralCount, ...) to every user.

Input (example):
  python tools/backfill_counters.py --db hopbunny.sqlite3
"""

from __future__ import annotations

import argparse
import asyncio
import os

from hopbunny.ledger.idempotency import IdempotencyGuard
from hopbunny.ledger.rank_cache import RankCache
from hopbunny.ledger.scores import ScoreService
from hopbunny.ledger.users import UserDirectory
from hopbunny.storage.sqlite import SqliteStore


async def backfill(db_path: str) -> int:
    store = SqliteStore(db_path)
    store.init()
    try:
        cache = RankCache(store)
        users = UserDirectory(store, ScoreService(store, cache, IdempotencyGuard()), cache)
        return await users.backfill_counters()
    finally:
        await store.close()


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--db", required=True)
    args = ap.parse_args()

    if not os.path.exists(args.db):
        ap.error(f"no such database: {args.db}")

    updated = asyncio.run(backfill(args.db))
    print(f"Updated {updated} users")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
