"""Dump the dense-ranked leaderboard of a SQLite ledger as JSON.

Input (example):
  python tools/export_leaderboard.py --db hopbunny.sqlite3 --out leaderboard.json --limit 100
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os

from hopbunny.ledger.rank_cache import RankCache
from hopbunny.storage.sqlite import SqliteStore


async def export(db_path: str, limit: int) -> list[dict]:
    store = SqliteStore(db_path)
    store.init()
    try:
        cache = RankCache(store)
        await cache.refresh()
        return [
            {"rank": e.rank, "uid": e.id, "username": e.username, "highScore": e.highScore}
            for e in cache.top(limit)
        ]
    finally:
        await store.close()


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--db", required=True)
    ap.add_argument("--out", required=True)
    ap.add_argument("--limit", type=int, default=100)
    args = ap.parse_args()

    if not os.path.exists(args.db):
        ap.error(f"no such database: {args.db}")

    rows = asyncio.run(export(args.db, args.limit))
    out = os.path.abspath(args.out)
    os.makedirs(os.path.dirname(out), exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump({"leaderboard": rows}, f, indent=2)
    print(f"Wrote {len(rows)} rows to {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
