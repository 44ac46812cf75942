"""Score Update Service: the one place game scores and referral credits land."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Awaitable

from hopbunny.ledger.errors import InvalidScore, LedgerError, StoreUnavailable, UserNotFound, ValidationError
from hopbunny.ledger.idempotency import IdempotencyGuard, request_key
from hopbunny.ledger.locks import KeyedLocks
from hopbunny.ledger.models import UNRANKED, USERS, UserRecord, utcnow
from hopbunny.ledger.rank_cache import RankCache
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


def coerce_score(v: Any) -> int:
    """Integer points from a JSON value; numeric strings and floats truncate."""
    if isinstance(v, bool) or v is None:
        raise InvalidScore("Score must be a number")
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        if not math.isfinite(v):
            raise InvalidScore("Score must be a number")
        return int(v)
    if isinstance(v, str):
        s = v.strip()
        try:
            return int(s)
        except ValueError:
            pass
        try:
            f = float(s)
        except ValueError:
            raise InvalidScore("Score must be a number")
        if not math.isfinite(f):
            raise InvalidScore("Score must be a number")
        return int(f)
    raise InvalidScore("Score must be a number")


async def store_call(op: str, aw: Awaitable):
    """Await a store operation; foreign failures become StoreUnavailable."""
    try:
        return await aw
    except LedgerError:
        raise
    except Exception as e:
        raise StoreUnavailable(f"Error {op}") from e


@dataclass
class ScoreUpdate:
    message: str
    previousScore: int | None = None
    addedScore: int | None = None
    totalScore: int | None = None
    highestSingleGameScore: int | None = None
    lastGameScore: int | None = None
    gamesPlayed: int | None = None
    previousReferralCount: int | None = None
    referralCount: int | None = None
    referralBonus: int | None = None
    rank: int | None = None
    isDuplicate: bool = False

    @classmethod
    def duplicate(cls) -> "ScoreUpdate":
        return cls(message="Duplicate referral request detected and prevented", isDuplicate=True)

    def to_payload(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ScoreService:
    def __init__(
        self,
        store,
        rank_cache: RankCache,
        guard: IdempotencyGuard,
        locks: KeyedLocks | None = None,
    ):
        self.store = store
        self.rank_cache = rank_cache
        self.guard = guard
        self.locks = locks or KeyedLocks()

    async def load(self, user_id: str, missing: str = "User not found") -> UserRecord:
        doc = await store_call("reading user", self.store.get_document(USERS, user_id))
        if doc is None:
            raise UserNotFound(user_id, missing)
        return UserRecord.from_document(doc)

    async def apply(
        self,
        user_id: str,
        score: Any,
        *,
        is_referral: bool = False,
        increment_referral_count: bool = False,
        unique_request_id: str | None = None,
    ) -> ScoreUpdate:
        if not user_id or score is None:
            raise ValidationError("User ID and score are required")
        delta = coerce_score(score)
        if is_referral:
            return await self.credit_referral(
                user_id,
                delta,
                increment_referral_count=increment_referral_count,
                unique_request_id=unique_request_id,
            )
        return await self.submit_game(user_id, delta)

    async def submit_game(self, user_id: str, delta: int) -> ScoreUpdate:
        async with self.locks.hold(user_id):
            user = await self.load(user_id, "User not found in database")

            total = user.score + delta
            high = max(user.highScore, delta)
            games = user.gamesPlayed + 1
            rank = self.rank_cache.rank_of(user_id, high)

            await store_call(
                "updating score",
                self.store.update_document(
                    USERS,
                    user_id,
                    {
                        "score": total,
                        "highScore": high,
                        "lastGameScore": delta,
                        "gamesPlayed": games,
                        "rank": rank,
                        "updatedAt": utcnow(),
                    },
                ),
            )

        logger.info("User %s score updated: +%d points (total: %d), rank: %d", user_id, delta, total, rank)
        return ScoreUpdate(
            message="Score updated successfully",
            previousScore=user.score,
            addedScore=delta,
            totalScore=total,
            highestSingleGameScore=high,
            lastGameScore=delta,
            gamesPlayed=games,
            referralCount=user.referralCount,
            rank=rank,
        )

    async def credit_referral(
        self,
        user_id: str,
        delta: int,
        *,
        increment_referral_count: bool = False,
        unique_request_id: str | None = None,
    ) -> ScoreUpdate:
        """Add referral points; the referrer side also bumps referralCount.

        Referrer credits pass through the idempotency guard, so a retried
        request with the same `unique_request_id` is applied at most once.
        """
        key = None
        if increment_referral_count:
            key = request_key(user_id, unique_request_id, now_ms=self.guard.now_ms())
            if not self.guard.check_and_mark(key):
                logger.info("Duplicate referral increment detected and prevented for %s", key)
                return ScoreUpdate.duplicate()

        try:
            async with self.locks.hold(user_id):
                user = await self.load(user_id, "User not found in database")
                patch: dict[str, Any] = {
                    "score": user.score + delta,
                    "referralBonus": user.referralBonus + delta,
                    "updatedAt": utcnow(),
                }
                if increment_referral_count:
                    patch["referralCount"] = user.referralCount + 1
                await store_call("adding referral bonus", self.store.update_document(USERS, user_id, patch))
        except Exception:
            if key is not None:
                self.guard.release(key)
            raise

        logger.info(
            "Referral bonus: user %s +%d points (total: %d)%s",
            user_id,
            delta,
            patch["score"],
            ", referral count %d -> %d" % (user.referralCount, patch["referralCount"]) if increment_referral_count else "",
        )
        return ScoreUpdate(
            message="Referral bonus added successfully",
            previousScore=user.score,
            addedScore=delta,
            totalScore=patch["score"],
            highestSingleGameScore=user.highScore,
            lastGameScore=user.lastGameScore,
            gamesPlayed=user.gamesPlayed,
            previousReferralCount=user.referralCount if increment_referral_count else None,
            referralCount=patch.get("referralCount", user.referralCount),
            referralBonus=patch["referralBonus"],
            rank=user.rank or UNRANKED,
        )
