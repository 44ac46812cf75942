"""Score Update Service: game submissions and referral credits."""

import asyncio

import pytest

from hopbunny.ledger.errors import InvalidScore, StoreUnavailable, UserNotFound, ValidationError
from hopbunny.ledger.models import USERS
from hopbunny.ledger.scores import coerce_score


class TestCoerceScore:
    @pytest.mark.parametrize("raw, expected", [(250, 250), ("250", 250), (" 42 ", 42), (12.9, 12), ("7.5", 7), (-3, -3)])
    def test_numeric_values(self, raw, expected):
        assert coerce_score(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "", True, None, [1], {"a": 1}, float("nan"), "inf"])
    def test_non_numeric_values(self, raw):
        with pytest.raises(InvalidScore):
            coerce_score(raw)


@pytest.mark.asyncio
class TestGameScores:
    async def test_score_accumulates_and_high_score_tracks_single_game(self, scores, store, make_user):
        await make_user("u1", score=1000, highScore=400, gamesPlayed=3)

        res = await scores.apply("u1", 600)

        assert res.previousScore == 1000
        assert res.addedScore == 600
        assert res.totalScore == 1600
        assert res.highestSingleGameScore == 600
        assert res.gamesPlayed == 4
        doc = await store.get_document(USERS, "u1")
        assert (doc["score"], doc["highScore"], doc["gamesPlayed"], doc["lastGameScore"]) == (1600, 600, 4, 600)
        assert doc["rank"] == res.rank
        assert doc["updatedAt"]

    async def test_lower_game_keeps_high_score(self, scores, make_user):
        await make_user("u1", score=1000, highScore=400)
        res = await scores.apply("u1", "150")
        assert res.totalScore == 1150
        assert res.highestSingleGameScore == 400

    async def test_rank_comes_from_rank_cache(self, scores, rank_cache, make_user):
        await make_user("top", highScore=900)
        await make_user("mid", highScore=500)
        await make_user("u1", highScore=100)
        await rank_cache.refresh()

        res = await scores.apply("u1", 600)

        assert res.rank == 2
        await rank_cache.wait_idle()

    async def test_unknown_user(self, scores):
        with pytest.raises(UserNotFound):
            await scores.apply("ghost", 10)

    async def test_missing_fields(self, scores):
        with pytest.raises(ValidationError):
            await scores.apply("", 10)
        with pytest.raises(ValidationError):
            await scores.apply("u1", None)

    async def test_non_numeric_score(self, scores, make_user):
        await make_user("u1")
        with pytest.raises(InvalidScore):
            await scores.apply("u1", "lots")

    async def test_store_failure_is_surfaced(self, scores, store, make_user):
        await make_user("u1", score=5)
        store.fail_for["u1"] = 1
        with pytest.raises(StoreUnavailable):
            await scores.apply("u1", 10)
        assert (await store.get_document(USERS, "u1"))["score"] == 5


@pytest.mark.asyncio
class TestReferralCredits:
    async def test_referred_user_credit_leaves_game_stats(self, scores, store, make_user):
        await make_user("u1", score=250, highScore=250, gamesPlayed=1, lastGameScore=250)

        res = await scores.apply("u1", 200, is_referral=True)

        assert res.totalScore == 450
        assert res.referralCount == 0
        assert res.previousReferralCount is None
        doc = await store.get_document(USERS, "u1")
        assert (doc["highScore"], doc["gamesPlayed"], doc["lastGameScore"]) == (250, 1, 250)
        assert doc["referralBonus"] == 200

    async def test_referrer_credit_increments_count(self, scores, store, make_user):
        await make_user("r1", score=100, referralCount=2, referralBonus=1000)

        res = await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="x")

        assert res.previousReferralCount == 2
        assert res.referralCount == 3
        assert res.totalScore == 600
        doc = await store.get_document(USERS, "r1")
        assert (doc["score"], doc["referralCount"], doc["referralBonus"]) == (600, 3, 1500)

    async def test_duplicate_request_is_applied_once(self, scores, store, make_user):
        await make_user("r1")

        first = await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")
        second = await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")

        assert first.isDuplicate is False
        assert second.isDuplicate is True
        assert second.to_payload() == {"message": "Duplicate referral request detected and prevented", "isDuplicate": True}
        doc = await store.get_document(USERS, "r1")
        assert (doc["score"], doc["referralCount"]) == (500, 1)

    async def test_duplicate_window_closes_after_an_hour(self, scores, store, guard_clock, make_user):
        await make_user("r1")
        await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")

        guard_clock.advance(3_600_001)
        res = await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")

        assert res.isDuplicate is False
        assert (await store.get_document(USERS, "r1"))["referralCount"] == 2

    async def test_failed_credit_does_not_block_retry(self, scores, store, make_user):
        await make_user("r1")
        store.fail_for["r1"] = 1

        with pytest.raises(StoreUnavailable):
            await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")
        res = await scores.apply("r1", 500, is_referral=True, increment_referral_count=True, unique_request_id="req-1")

        assert res.isDuplicate is False
        assert (await store.get_document(USERS, "r1"))["referralCount"] == 1

    async def test_without_request_id_retries_are_not_deduplicated(self, scores, store, guard_clock, make_user):
        await make_user("r1")
        await scores.apply("r1", 500, is_referral=True, increment_referral_count=True)
        guard_clock.advance(5)
        await scores.apply("r1", 500, is_referral=True, increment_referral_count=True)
        assert (await store.get_document(USERS, "r1"))["referralCount"] == 2


@pytest.mark.asyncio
async def test_new_player_game_then_referral_credits(scores, store, make_user):
    await make_user("U1", score=0)
    await make_user("R1", score=1000, referralCount=4)

    game = await scores.apply("U1", 250)
    assert (game.totalScore, game.highestSingleGameScore, game.gamesPlayed) == (250, 250, 1)

    bonus = await scores.apply("U1", 200, is_referral=True, increment_referral_count=False)
    assert (bonus.totalScore, bonus.referralCount) == (450, 0)

    referrer = await scores.apply("R1", 500, is_referral=True, increment_referral_count=True, unique_request_id="U1")
    assert referrer.referralCount == 5
    assert referrer.totalScore == 1500
    doc = await store.get_document(USERS, "R1")
    assert (doc["score"], doc["referralCount"]) == (1500, 5)


@pytest.mark.asyncio
async def test_concurrent_games_for_one_user_are_serialized(scores, store, make_user):
    await make_user("u1")
    await asyncio.gather(*(scores.apply("u1", 10) for _ in range(20)))

    doc = await store.get_document(USERS, "u1")
    assert (doc["score"], doc["gamesPlayed"]) == (200, 20)
    assert len(scores.locks) == 0
