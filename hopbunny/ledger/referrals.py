"""Referral settlement: credit both sides of a referral exactly once.

Flow per (referrer, referred) pair, serialized by a pair lock:

  NONE -> PENDING_SETTLEMENT -> ALREADY_SETTLED   (record exists, nothing written)
                             -> SETTLED           (referrer credit, referred credit, record)

Each credit walks an ordered list of strategies and stops at the first one
that succeeds. The referral record, keyed by the pair, is written last and is
the durable proof of settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from hopbunny.ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    UpstreamError,
    UserNotFound,
    ValidationError,
)
from hopbunny.ledger.locks import KeyedLocks
from hopbunny.ledger.models import REFERRALS, USERS, ReferralRecord, UserRecord, referral_id, utcnow
from hopbunny.ledger.scores import ScoreService
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


class SettlementState(str, Enum):
    NONE = "none"
    PENDING_SETTLEMENT = "pending_settlement"
    ALREADY_SETTLED = "already_settled"
    SETTLED = "settled"


@dataclass(frozen=True)
class CreditRequest:
    user_id: str
    amount: int
    increment_referral_count: bool
    request_id: str | None


CreditStrategy = tuple[str, Callable[[CreditRequest], Awaitable[None]]]


@dataclass
class SettlementResult:
    state: SettlementState
    referrerId: str
    referredId: str
    referrerBonus: int = 0
    referredBonus: int = 0
    strategy: str | None = None
    record: ReferralRecord | None = None

    @property
    def settled(self) -> bool:
        return self.state == SettlementState.SETTLED

    def to_payload(self) -> dict[str, Any]:
        if not self.settled:
            return {
                "message": "This referral has already been processed",
                "success": False,
                "isDuplicate": True,
                "referrerId": self.referrerId,
                "referredId": self.referredId,
            }
        return {
            "message": "Referral processed successfully",
            "success": True,
            "referrerId": self.referrerId,
            "referredId": self.referredId,
            "referrerBonus": self.referrerBonus,
            "referredBonus": self.referredBonus,
            "strategy": self.strategy,
        }


class ReferralSettlement:
    def __init__(
        self,
        store,
        scores: ScoreService,
        referrer_bonus: int = 500,
        referred_bonus: int = 200,
        strategies: list[CreditStrategy] | None = None,
    ):
        self.store = store
        self.scores = scores
        self.referrer_bonus = int(referrer_bonus)
        self.referred_bonus = int(referred_bonus)
        self.strategies: list[CreditStrategy] = strategies or [
            ("score-service", self._credit_via_scores),
            ("direct-store", self._credit_direct),
        ]
        self._pair_locks = KeyedLocks()
        self._in_flight: set[str] = set()

    # Credit strategies.

    async def _credit_via_scores(self, req: CreditRequest) -> None:
        res = await self.scores.credit_referral(
            req.user_id,
            req.amount,
            increment_referral_count=req.increment_referral_count,
            unique_request_id=req.request_id,
        )
        if res.isDuplicate:
            logger.info("Credit %s for %s was already applied", req.request_id, req.user_id)

    async def _credit_direct(self, req: CreditRequest) -> None:
        async with self.scores.locks.hold(req.user_id):
            doc = await self.store.get_document(USERS, req.user_id)
            if doc is None:
                raise UserNotFound(req.user_id)
            user = UserRecord.from_document(doc)
            patch: dict[str, Any] = {
                "score": user.score + req.amount,
                "referralBonus": user.referralBonus + req.amount,
                "updatedAt": utcnow(),
            }
            if req.increment_referral_count:
                patch["referralCount"] = user.referralCount + 1
            await self.store.update_document(USERS, req.user_id, patch)

    async def _credit(self, req: CreditRequest) -> str:
        last: Exception | None = None
        for name, fn in self.strategies:
            try:
                await fn(req)
            except (NotFoundError, ValidationError):
                raise
            except Exception as e:
                logger.warning("Credit strategy %s failed for user %s: %s", name, req.user_id, e)
                last = e
                continue
            logger.info("Credited %d referral points to %s via %s", req.amount, req.user_id, name)
            return name
        raise UpstreamError("Error processing referral", {"userId": req.user_id}) from last

    # Queries.

    async def find_record(self, referrer_id: str, referred_id: str) -> ReferralRecord | None:
        docs, _ = await self.store.list_documents(
            REFERRALS, where={"referrerId": referrer_id, "referredId": referred_id}, limit=1
        )
        if not docs:
            return None
        return ReferralRecord.from_document(docs[0])

    async def state_of(self, referrer_id: str, referred_id: str) -> SettlementState:
        if await self.find_record(referrer_id, referred_id) is not None:
            return SettlementState.SETTLED
        if referral_id(referrer_id, referred_id) in self._in_flight:
            return SettlementState.PENDING_SETTLEMENT
        return SettlementState.NONE

    async def stats(self, user_id: str) -> dict[str, Any]:
        user = await self.scores.load(user_id)
        docs, _ = await self.store.list_documents(
            REFERRALS, where={"referrerId": user_id}, order_by="processedAt", descending=True
        )
        return {
            "referralCount": user.referralCount,
            "referralBonus": user.referralBonus,
            "referrals": [ReferralRecord.from_document(d).public() for d in docs],
        }

    # Settlement.

    async def settle(self, referrer_id: str, referred_id: str, *, source: str = "referral") -> SettlementResult:
        if not referrer_id or not referred_id:
            raise ValidationError("Both referrer and referred user IDs are required")
        if referrer_id == referred_id:
            raise ValidationError("Users cannot refer themselves")

        pair = referral_id(referrer_id, referred_id)
        async with self._pair_locks.hold(pair):
            existing = await self.find_record(referrer_id, referred_id)
            if existing is not None:
                logger.info("Referral %s -> %s already settled; nothing to do", referrer_id, referred_id)
                return SettlementResult(SettlementState.ALREADY_SETTLED, referrer_id, referred_id, record=existing)

            referrer = await self.scores.load(referrer_id, "Referrer user not found")
            referred = await self.scores.load(referred_id, "Referred user not found")

            self._in_flight.add(pair)
            try:
                logger.info("Settling referral %s -> %s (%s)", referrer_id, referred_id, source)
                strategy = await self._credit(
                    CreditRequest(referrer_id, self.referrer_bonus, True, f"referral:{pair}")
                )
                await self._credit(CreditRequest(referred_id, self.referred_bonus, False, None))

                now = utcnow()
                record = ReferralRecord(
                    referrerId=referrer_id,
                    referredId=referred_id,
                    referrerBonus=self.referrer_bonus,
                    referredBonus=self.referred_bonus,
                    referrerUsername=referrer.username,
                    referredUsername=referred.username,
                    status=SettlementState.SETTLED.value,
                    source=source,
                    processedAt=now,
                    createdAt=now,
                )
                try:
                    await self.store.create_document(REFERRALS, record.id, record.to_document())
                except ConflictError:
                    logger.error("Referral %s -> %s was settled concurrently by another process", referrer_id, referred_id)
                    return SettlementResult(SettlementState.ALREADY_SETTLED, referrer_id, referred_id)
                except LedgerError:
                    raise
                except Exception as e:
                    raise UpstreamError("Error recording referral") from e
            finally:
                self._in_flight.discard(pair)

        logger.info("Referral processed: %s referred %s", referrer_id, referred_id)
        return SettlementResult(
            SettlementState.SETTLED,
            referrer_id,
            referred_id,
            referrerBonus=self.referrer_bonus,
            referredBonus=self.referred_bonus,
            strategy=strategy,
            record=record,
        )

    async def settle_signup(
        self,
        new_user_id: str,
        referrer_id: str | None = None,
        referrer_username: str | None = None,
    ) -> SettlementResult:
        if not new_user_id:
            raise ValidationError("New user ID is required")
        if not referrer_id:
            if not referrer_username:
                raise ValidationError("referrerId or referrerUsername is required")
            docs, _ = await self.store.list_documents(USERS, where={"username": referrer_username}, limit=1)
            if not docs:
                raise UserNotFound(referrer_username, "Referrer user not found")
            referrer_id = str(docs[0]["id"])
        return await self.settle(referrer_id, new_user_id, source="signup")
