"""Shared fixtures: fake clocks, a store with injectable faults, wired services."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from hopbunny.app import create_app
from hopbunny.ledger.config import LedgerConfig
from hopbunny.ledger.idempotency import IdempotencyGuard
from hopbunny.ledger.models import USERS
from hopbunny.ledger.rank_cache import RankCache
from hopbunny.ledger.referrals import ReferralSettlement
from hopbunny.ledger.scores import ScoreService
from hopbunny.ledger.users import UserDirectory
from hopbunny.storage.memory import MemoryStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


class FlakyStore(MemoryStore):
    """MemoryStore that can fail updates for chosen ids and counts listings."""

    def __init__(self):
        super().__init__()
        self.fail_for: dict[str, int] = {}
        self.fail_lists = False
        self.list_calls = 0

    async def update_document(self, collection, doc_id, patch):
        left = self.fail_for.get(doc_id, 0)
        if left:
            self.fail_for[doc_id] = left - 1
            raise RuntimeError("store unavailable")
        return await super().update_document(collection, doc_id, patch)

    async def list_documents(self, collection, **kwargs):
        self.list_calls += 1
        if self.fail_lists:
            raise RuntimeError("store unavailable")
        return await super().list_documents(collection, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def make_user(store):
    async def _make(user_id: str, **fields: Any) -> dict[str, Any]:
        doc = {"username": user_id, "email": f"{user_id}@example.com", **fields}
        return await store.create_document(USERS, user_id, doc)

    return _make


@pytest.fixture
def rank_cache(store, clock) -> RankCache:
    return RankCache(store, ttl_sec=600.0, clock=clock)


@pytest.fixture
def guard_clock() -> FakeClock:
    return FakeClock(start=0.0)


@pytest.fixture
def guard(guard_clock) -> IdempotencyGuard:
    return IdempotencyGuard(ttl_ms=3_600_000, clock=guard_clock)


@pytest.fixture
def scores(store, rank_cache, guard) -> ScoreService:
    return ScoreService(store, rank_cache, guard)


@pytest.fixture
def referrals(store, scores) -> ReferralSettlement:
    return ReferralSettlement(store, scores, referrer_bonus=500, referred_bonus=200)


@pytest.fixture
def users(store, scores, rank_cache) -> UserDirectory:
    return UserDirectory(store, scores, rank_cache)


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(sqlite_enabled=False, rank_refresh_sec=0, auth_secret="test-secret")


@pytest_asyncio.fixture
async def client(config, store):
    app = create_app(config, store=store)
    async with TestClient(TestServer(app)) as c:
        yield c
