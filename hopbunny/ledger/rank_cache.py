"""Dense-ranked leaderboard snapshot with TTL and background refresh."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from hopbunny.ledger.models import USERS
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class RankEntry:
    id: str
    username: str
    highScore: int
    rank: int


def dense_rank(docs: Iterable[dict[str, Any]]) -> list[RankEntry]:
    """Rank documents already sorted by highScore descending.

    Ties share a rank and the next distinct score advances it by one:
    [500, 500, 300, 100] -> [1, 1, 2, 3].
    """
    out: list[RankEntry] = []
    rank = 0
    last: int | None = None
    for d in docs:
        high = int(d.get("highScore") or 0)
        if last is None or high < last:
            rank += 1
            last = high
        out.append(RankEntry(id=str(d["id"]), username=str(d.get("username") or ""), highScore=high, rank=rank))
    return out


class RankCache:
    def __init__(self, store, ttl_sec: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.ttl_sec = float(ttl_sec)
        self._clock = clock

        self._entries: list[RankEntry] = []
        self._by_id: dict[str, RankEntry] = {}
        self.last_updated: float | None = None
        self.updating = False
        self._refresh_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[RankEntry]:
        return list(self._entries)

    def age(self) -> float | None:
        if self.last_updated is None:
            return None
        return self._clock() - self.last_updated

    def is_stale(self) -> bool:
        age = self.age()
        return age is None or age > self.ttl_sec

    def get(self, user_id: str) -> RankEntry | None:
        return self._by_id.get(user_id)

    def set(self, entries: list[RankEntry]) -> None:
        self._entries = list(entries)
        self._by_id = {e.id: e for e in self._entries}
        self.last_updated = self._clock()

    def top(self, limit: int) -> list[RankEntry]:
        return self._entries[: max(0, int(limit))]

    async def refresh(self) -> bool:
        """Rebuild the snapshot. No-op while another refresh is in flight.

        Returns True if this call replaced the snapshot. Store failures are
        logged and leave the previous snapshot in place.
        """
        if self.updating:
            return False
        self.updating = True
        try:
            docs, _ = await self.store.list_documents(USERS, order_by="highScore", descending=True)
            self.set(dense_rank(docs))
            logger.debug("Rank cache refreshed with %d users", len(self._entries))
            return True
        except Exception:
            logger.exception("Rank cache refresh failed; keeping previous snapshot")
            return False
        finally:
            self.updating = False

    def schedule_refresh(self) -> asyncio.Task | None:
        """Start one background refresh unless one is already pending."""
        if self.updating or (self._refresh_task is not None and not self._refresh_task.done()):
            return None
        self._refresh_task = asyncio.get_running_loop().create_task(self.refresh())
        return self._refresh_task

    async def wait_idle(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            await task

    def estimate(self, candidate_high_score: int) -> int:
        for e in self._entries:
            if e.highScore <= candidate_high_score:
                return e.rank
        return len(self._entries) + 1

    def rank_of(self, user_id: str, candidate_high_score: int) -> int:
        """Cached rank if fresh and current, otherwise an approximate one.

        A user present in a fresh snapshot whose highScore has since changed
        gets an estimate rather than the cached rank.

        Unknown users and a stale snapshot schedule a background refresh; the
        caller never waits for it and gets an estimate from the snapshot at hand.
        """
        entry = self._by_id.get(user_id)
        if entry is None or self.is_stale():
            self.schedule_refresh()
        elif entry.highScore == candidate_high_score:
            return entry.rank
        return self.estimate(candidate_high_score)

    async def close(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
