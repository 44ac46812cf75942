"""Request bodies and query strings, validated into dataclasses.

Wire format: JSON objects with camelCase keys, e.g.
  {"userId": "u1", "score": 250, "isReferral": false}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from hopbunny.ledger.errors import ValidationError


def _str(v: Any) -> str | None:
    if isinstance(v, str) and v.strip():
        return v.strip()
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return None


def _bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "on")
    return bool(v)


def _int(v: Any, *, name: str, default: int) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


@dataclass
class UpdateScore:
    userId: str
    score: Any
    isReferral: bool
    incrementReferralCount: bool
    uniqueRequestId: str | None

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "UpdateScore":
        user_id = _str(data.get("userId"))
        score = data.get("score")
        if not user_id or score is None:
            raise ValidationError("User ID and score are required")
        return cls(
            userId=user_id,
            score=score,
            isReferral=_bool(data.get("isReferral")),
            incrementReferralCount=_bool(data.get("incrementReferralCount")),
            uniqueRequestId=_str(data.get("uniqueRequestId")),
        )


@dataclass
class Referral:
    referrerId: str
    referredId: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Referral":
        referrer = _str(data.get("referrerId"))
        referred = _str(data.get("referredId"))
        if not referrer or not referred:
            raise ValidationError("Both referrer and referred user IDs are required")
        return cls(referrerId=referrer, referredId=referred)


@dataclass
class SignupReferral:
    newUserId: str
    referrerId: str | None
    referrerUsername: str | None

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "SignupReferral":
        new_user = _str(data.get("newUserId")) or _str(data.get("referredId"))
        if not new_user:
            raise ValidationError("New user ID is required")
        referrer = _str(data.get("referrerId"))
        username = _str(data.get("referrerUsername"))
        if not referrer and not username:
            raise ValidationError("referrerId or referrerUsername is required")
        return cls(newUserId=new_user, referrerId=referrer, referrerUsername=username)


@dataclass
class ReferralCount:
    userId: str
    referralCount: int

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "ReferralCount":
        user_id = _str(data.get("userId"))
        if not user_id:
            raise ValidationError("User ID is required")
        raw = data.get("referralCount")
        if raw is None:
            raise ValidationError("Referral count is required")
        if isinstance(raw, bool):
            raise ValidationError("Referral count must be a number")
        try:
            count = int(raw)
        except (TypeError, ValueError):
            raise ValidationError("Referral count must be a number")
        if count < 0:
            raise ValidationError("Referral count cannot be negative")
        return cls(userId=user_id, referralCount=count)


@dataclass
class DisplayUpdate:
    displayName: str | None
    username: str | None

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "DisplayUpdate":
        display = _str(data.get("displayName"))
        username = _str(data.get("username"))
        if not display and not username:
            raise ValidationError("Nothing to update: provide displayName or username")
        return cls(displayName=display[:64] if display else None, username=username[:32] if username else None)


@dataclass
class UserQuery:
    limit: int
    offset: int
    sortBy: str
    sortDir: str
    username: str | None

    @classmethod
    def parse(cls, query: Mapping[str, str], *, default_limit: int = 10, max_limit: int = 100) -> "UserQuery":
        limit = _int(query.get("limit"), name="limit", default=default_limit)
        offset = _int(query.get("offset"), name="offset", default=0)
        if limit < 1 or limit > max_limit:
            raise ValidationError(f"limit must be between 1 and {max_limit}")
        if offset < 0:
            raise ValidationError("offset cannot be negative")
        return cls(
            limit=limit,
            offset=offset,
            sortBy=query.get("sortBy") or "createdAt",
            sortDir=(query.get("sortDir") or "desc").lower(),
            username=_str(query.get("username")),
        )


def parse_limit(query: Mapping[str, str], *, default: int, max_limit: int) -> int:
    limit = _int(query.get("limit"), name="limit", default=default)
    return max(1, min(limit, max_limit))
