"""Rank cache: dense ranking, TTL staleness and background refresh."""

import asyncio
import random

import pytest

from hopbunny.ledger.rank_cache import RankCache, dense_rank
from hopbunny.storage.memory import MemoryStore


class GatedStore(MemoryStore):
    """Blocks listings until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.list_calls = 0

    async def list_documents(self, collection, **kwargs):
        self.list_calls += 1
        await self.gate.wait()
        return await super().list_documents(collection, **kwargs)


def _docs(scores):
    return [{"id": f"u{i}", "highScore": s} for i, s in enumerate(scores)]


class TestDenseRank:
    def test_ties_share_rank_and_next_score_advances_by_one(self):
        ranks = [e.rank for e in dense_rank(_docs([500, 500, 300, 100]))]
        assert ranks == [1, 1, 2, 3]

    def test_many_ties_never_skip_ranks(self):
        ranks = [e.rank for e in dense_rank(_docs([900, 900, 900, 900, 10]))]
        assert ranks == [1, 1, 1, 1, 2]

    def test_missing_high_score_counts_as_zero(self):
        entries = dense_rank([{"id": "a", "highScore": 5}, {"id": "b"}])
        assert [(e.id, e.highScore, e.rank) for e in entries] == [("a", 5, 1), ("b", 0, 2)]

    def test_rank_sequence_is_monotonic_for_random_snapshots(self):
        rng = random.Random(7)
        for _ in range(50):
            scores = sorted((rng.randint(0, 20) * 50 for _ in range(rng.randint(1, 40))), reverse=True)
            entries = dense_rank(_docs(scores))
            assert entries[0].rank == 1
            for prev, cur in zip(entries, entries[1:]):
                if cur.highScore == prev.highScore:
                    assert cur.rank == prev.rank
                else:
                    assert cur.rank == prev.rank + 1
            assert entries[-1].rank == len(set(scores))


@pytest.mark.asyncio
class TestRefresh:
    async def test_refresh_builds_sorted_snapshot(self, rank_cache, make_user):
        await make_user("a", highScore=300)
        await make_user("b", highScore=500)
        await make_user("c", highScore=500)
        await make_user("d", highScore=100)

        assert await rank_cache.refresh() is True

        assert [e.highScore for e in rank_cache.entries] == [500, 500, 300, 100]
        assert rank_cache.get("a").rank == 2
        assert rank_cache.get("d").rank == 3
        assert not rank_cache.is_stale()

    async def test_failed_refresh_keeps_previous_snapshot(self, rank_cache, store, make_user):
        await make_user("a", highScore=10)
        await rank_cache.refresh()
        before = rank_cache.last_updated

        store.fail_lists = True
        assert await rank_cache.refresh() is False

        assert rank_cache.get("a").rank == 1
        assert rank_cache.last_updated == before
        assert rank_cache.updating is False

    async def test_concurrent_refresh_collapses_into_one(self):
        store = GatedStore()
        cache = RankCache(store)

        first = asyncio.create_task(cache.refresh())
        await asyncio.sleep(0)
        assert cache.updating is True
        assert await cache.refresh() is False

        store.gate.set()
        assert await first is True
        assert store.list_calls == 1


@pytest.mark.asyncio
class TestRankOf:
    async def test_fresh_snapshot_answers_from_cache(self, rank_cache, store, make_user):
        await make_user("a", highScore=500)
        await make_user("b", highScore=300)
        await rank_cache.refresh()
        calls = store.list_calls

        assert rank_cache.rank_of("b", 300) == 2
        await rank_cache.wait_idle()
        assert store.list_calls == calls

    async def test_stale_snapshot_estimates_and_refreshes_once(self, rank_cache, store, clock, make_user):
        await make_user("a", highScore=500)
        await make_user("b", highScore=300)
        await rank_cache.refresh()
        assert store.list_calls == 1

        clock.advance(601)
        assert rank_cache.is_stale()
        first = rank_cache.rank_of("b", 300)
        second = rank_cache.rank_of("a", 500)
        third = rank_cache.rank_of("b", 300)

        assert (first, second, third) == (2, 1, 2)
        await rank_cache.wait_idle()
        assert store.list_calls == 2
        assert not rank_cache.is_stale()

    async def test_unknown_user_gets_linear_scan_estimate(self, rank_cache, make_user):
        await make_user("a", highScore=500)
        await make_user("b", highScore=300)
        await make_user("c", highScore=100)
        await rank_cache.refresh()

        assert rank_cache.rank_of("new", 400) == 2
        assert rank_cache.rank_of("new", 300) == 2
        assert rank_cache.rank_of("new", 1000) == 1
        assert rank_cache.rank_of("new", 50) == 4
        await rank_cache.wait_idle()

    async def test_new_personal_best_is_estimated_from_snapshot(self, rank_cache, make_user):
        await make_user("a", highScore=500)
        await make_user("b", highScore=300)
        await rank_cache.refresh()

        assert rank_cache.rank_of("b", 600) == 1

    async def test_empty_snapshot_ranks_first(self, rank_cache):
        assert rank_cache.rank_of("solo", 0) == 1
        await rank_cache.wait_idle()

    async def test_close_cancels_pending_refresh(self):
        store = GatedStore()
        cache = RankCache(store)
        assert cache.schedule_refresh() is not None
        await asyncio.sleep(0)

        await cache.close()

        assert cache.last_updated is None
