"""User records: registration, lookup, listing and display-field edits."""

from __future__ import annotations

from typing import Any

from hopbunny.ledger.errors import ConflictError, InvalidScore, ValidationError
from hopbunny.ledger.models import COUNTER_FIELDS, UNRANKED, USERS, UserRecord, utcnow
from hopbunny.ledger.rank_cache import RankCache
from hopbunny.ledger.scores import ScoreService, coerce_score, store_call
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)

SORTABLE = ("createdAt", "updatedAt", "score", "highScore", "gamesPlayed", "referralCount", "rank", "username")


def _counter(data: dict[str, Any], name: str) -> int:
    v = data.get(name)
    if v is None:
        return 0
    try:
        n = coerce_score(v)
    except InvalidScore:
        raise ValidationError(f"{name} must be a number")
    if n < 0:
        raise ValidationError(f"{name} cannot be negative")
    return n


class UserDirectory:
    def __init__(self, store, scores: ScoreService, rank_cache: RankCache):
        self.store = store
        self.scores = scores
        self.rank_cache = rank_cache

    async def create(self, data: dict[str, Any]) -> UserRecord:
        user_id = data.get("userId")
        if not user_id or not data.get("email") or not data.get("username"):
            raise ValidationError("Missing required fields", {"required": ["userId", "email", "username"]})
        now = utcnow()
        doc = {
            "email": data["email"],
            "username": data["username"],
            "displayName": data.get("displayName") or data["username"],
            **{f: _counter(data, f) for f in COUNTER_FIELDS},
            "rank": _counter(data, "rank") or UNRANKED,
            "createdAt": data.get("createdAt") or now,
            "updatedAt": now,
        }
        try:
            created = await store_call("creating user", self.store.create_document(USERS, str(user_id), doc))
        except ConflictError:
            raise ConflictError("User already exists", {"userId": user_id})
        logger.info("Created user %s (%s)", user_id, doc["username"])
        return UserRecord.from_document(created)

    async def get(self, user_id: str) -> UserRecord:
        """Fetch a user, computing and storing the rank if none is stored."""
        user = await self.scores.load(user_id, "User not found in database")
        if user.rank is None:
            user.rank = self.rank_cache.rank_of(user_id, user.highScore)
            await store_call(
                "storing rank",
                self.store.update_document(USERS, user_id, {"rank": user.rank, "updatedAt": utcnow()}),
            )
        return user

    async def list(
        self,
        *,
        limit: int,
        offset: int = 0,
        sort_by: str = "createdAt",
        sort_dir: str = "desc",
        username: str | None = None,
    ) -> dict[str, Any]:
        if sort_by not in SORTABLE:
            raise ValidationError("Invalid sortBy", {"allowed": list(SORTABLE)})
        if sort_dir not in ("asc", "desc"):
            raise ValidationError("sortDir must be 'asc' or 'desc'")
        docs, total = await store_call(
            "fetching users",
            self.store.list_documents(
                USERS,
                search=("username", username) if username else None,
                order_by=sort_by,
                descending=sort_dir == "desc",
                limit=limit,
                offset=offset,
            ),
        )
        users = []
        for d in docs:
            user = UserRecord.from_document(d)
            entry = self.rank_cache.get(user.id)
            users.append(user.public(rank=entry.rank if entry else None))
        return {
            "users": users,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "hasMore": len(users) + offset < total,
            },
        }

    async def update_display(self, user_id: str, display_name: str | None, username: str | None) -> UserRecord:
        patch: dict[str, Any] = {}
        if display_name:
            patch["displayName"] = display_name
        if username:
            patch["username"] = username
        if not patch:
            raise ValidationError("Nothing to update: provide displayName or username")
        await self.scores.load(user_id)
        patch["updatedAt"] = utcnow()
        doc = await store_call("updating user", self.store.update_document(USERS, user_id, patch))
        return UserRecord.from_document(doc)

    async def set_referral_count(self, user_id: str, count: int) -> int:
        async with self.scores.locks.hold(user_id):
            await self.scores.load(user_id, "User not found in database")
            await store_call(
                "updating referral count",
                self.store.update_document(USERS, user_id, {"referralCount": count, "updatedAt": utcnow()}),
            )
        logger.info("Updated referral count for user %s to %d", user_id, count)
        return count

    async def backfill_counters(self) -> int:
        """Give every user record all counter fields, defaulting to 0."""
        docs, _ = await store_call("listing users", self.store.list_documents(USERS))
        updated = 0
        for d in docs:
            missing = {f: 0 for f in COUNTER_FIELDS if d.get(f) is None}
            if not missing:
                continue
            if "score" in missing and d.get("highScore") is not None:
                missing["score"] = d["highScore"]
            missing["updatedAt"] = utcnow()
            async with self.scores.locks.hold(str(d["id"])):
                await store_call("backfilling user", self.store.update_document(USERS, str(d["id"]), missing))
            updated += 1
        logger.info("Backfilled counters on %d users", updated)
        return updated
