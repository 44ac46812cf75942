"""User and referral records as they live in the document store."""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

UNRANKED = 999

USERS = "users"
REFERRALS = "referrals"

COUNTER_FIELDS = ("score", "highScore", "lastGameScore", "gamesPlayed", "referralCount", "referralBonus")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _int(v: Any) -> int:
    try:
        return int(v or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class UserRecord:
    id: str
    username: str = ""
    displayName: str = ""
    email: str = ""
    score: int = 0
    highScore: int = 0
    lastGameScore: int = 0
    gamesPlayed: int = 0
    rank: int | None = None
    referralCount: int = 0
    referralBonus: int = 0
    createdAt: str | None = None
    updatedAt: str | None = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "UserRecord":
        high = _int(doc.get("highScore"))
        # Early records only carried highScore.
        score = _int(doc.get("score")) if doc.get("score") is not None else high
        rank = doc.get("rank")
        return cls(
            id=str(doc["id"]),
            username=str(doc.get("username") or ""),
            displayName=str(doc.get("displayName") or doc.get("username") or ""),
            email=str(doc.get("email") or ""),
            score=score,
            highScore=high,
            lastGameScore=_int(doc.get("lastGameScore")),
            gamesPlayed=_int(doc.get("gamesPlayed")),
            rank=_int(rank) if rank is not None else None,
            referralCount=_int(doc.get("referralCount")),
            referralBonus=_int(doc.get("referralBonus")),
            createdAt=doc.get("createdAt"),
            updatedAt=doc.get("updatedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc.pop("id")
        return doc

    def public(self, rank: int | None = None) -> dict[str, Any]:
        return {
            "uid": self.id,
            "email": self.email,
            "username": self.username,
            "displayName": self.displayName,
            "score": self.score,
            "highScore": self.highScore,
            "lastGameScore": self.lastGameScore,
            "gamesPlayed": self.gamesPlayed,
            "rank": rank or self.rank or UNRANKED,
            "referralCount": self.referralCount,
            "referralBonus": self.referralBonus,
            "createdAt": self.createdAt,
            "updatedAt": self.updatedAt,
        }


def referral_id(referrer_id: str, referred_id: str) -> str:
    """Stable id for a (referrer, referred) pair; distinct pairs never collide."""
    raw = json.dumps([referrer_id, referred_id], separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class ReferralRecord:
    referrerId: str
    referredId: str
    referrerBonus: int
    referredBonus: int
    referrerUsername: str = ""
    referredUsername: str = ""
    status: str = "settled"
    source: str = "referral"
    processedAt: str | None = None
    createdAt: str | None = None

    @property
    def id(self) -> str:
        return referral_id(self.referrerId, self.referredId)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "ReferralRecord":
        return cls(
            referrerId=str(doc["referrerId"]),
            referredId=str(doc["referredId"]),
            referrerBonus=_int(doc.get("referrerBonus")),
            referredBonus=_int(doc.get("referredBonus")),
            referrerUsername=str(doc.get("referrerUsername") or ""),
            referredUsername=str(doc.get("referredUsername") or ""),
            status=str(doc.get("status") or "settled"),
            source=str(doc.get("source") or "referral"),
            processedAt=doc.get("processedAt"),
            createdAt=doc.get("createdAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return asdict(self)

    def public(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_document()}
