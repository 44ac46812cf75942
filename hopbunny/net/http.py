"""REST handlers."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from hopbunny.ledger.errors import ValidationError
from hopbunny.net import protocol

FAILURE_MESSAGES = {
    "create-user": "Error creating user",
    "list-users": "Error fetching users",
    "get-user": "Error retrieving user data",
    "put-user": "Error updating user",
    "update-score": "Error updating score",
    "referral": "Error processing referral",
    "signup-referral": "Error processing referral",
    "referral-stats": "Error getting referral stats",
    "referral-count": "Error getting referral count",
    "update-referral-count": "Error updating referral count",
    "leaderboard": "Error fetching leaderboard",
    "update-users": "Error updating users",
}


async def read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        raise ValidationError("Request body must be a JSON object")
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


class ApiHandlers:
    def __init__(self, svc):
        self.svc = svc

    def register(self, router: web.UrlDispatcher) -> None:
        router.add_post("/api/users", self.create_user, name="create-user")
        router.add_get("/api/users", self.list_users, name="list-users")
        router.add_get("/api/user/{userId}", self.get_user, name="get-user")
        router.add_put("/api/user/{userId}", self.put_user, name="put-user")
        router.add_post("/api/update-score", self.update_score, name="update-score")
        router.add_post("/api/update-users", self.update_users, name="update-users")
        router.add_post("/api/referral", self.referral, name="referral")
        router.add_post("/api/referral/process-signup-referral", self.signup_referral, name="signup-referral")
        router.add_get("/api/referral/stats/{userId}", self.referral_stats, name="referral-stats")
        router.add_get("/api/referral/count/{userId}", self.referral_count, name="referral-count")
        router.add_post("/api/referral/update-count", self.update_referral_count, name="update-referral-count")
        router.add_get("/api/leaderboard", self.leaderboard, name="leaderboard")

    # Users.

    async def create_user(self, request: web.Request) -> web.Response:
        user = await self.svc.users.create(await read_json(request))
        return web.json_response({"message": "User created successfully", "user": user.public()}, status=201)

    async def list_users(self, request: web.Request) -> web.Response:
        cfg = self.svc.config
        q = protocol.UserQuery.parse(
            request.query, default_limit=cfg.default_page_size, max_limit=cfg.max_page_size
        )
        page = await self.svc.users.list(
            limit=q.limit, offset=q.offset, sort_by=q.sortBy, sort_dir=q.sortDir, username=q.username
        )
        return web.json_response({"message": "Users fetched successfully", **page})

    async def get_user(self, request: web.Request) -> web.Response:
        user = await self.svc.users.get(request.match_info["userId"])
        return web.json_response({"message": "User fetched successfully", **user.public()})

    async def put_user(self, request: web.Request) -> web.Response:
        user_id = request.match_info["userId"]
        self.svc.auth.require_user(request, user_id)
        body = protocol.DisplayUpdate.parse(await read_json(request))
        user = await self.svc.users.update_display(user_id, body.displayName, body.username)
        return web.json_response({"message": "User updated successfully", "user": user.public()})

    async def update_users(self, _: web.Request) -> web.Response:
        updated = await self.svc.users.backfill_counters()
        if updated:
            message = f"Successfully added missing counters to {updated} users"
        else:
            message = "All users already have every counter field"
        return web.json_response({"message": message, "updated": updated})

    # Scores.

    async def update_score(self, request: web.Request) -> web.Response:
        body = protocol.UpdateScore.parse(await read_json(request))
        result = await self.svc.scores.apply(
            body.userId,
            body.score,
            is_referral=body.isReferral,
            increment_referral_count=body.incrementReferralCount,
            unique_request_id=body.uniqueRequestId,
        )
        return web.json_response(result.to_payload())

    async def leaderboard(self, request: web.Request) -> web.Response:
        cfg = self.svc.config
        limit = protocol.parse_limit(request.query, default=cfg.leaderboard_size, max_limit=cfg.max_page_size)
        cache = self.svc.rank_cache
        if cache.last_updated is None:
            await cache.refresh()
        elif cache.is_stale():
            cache.schedule_refresh()
        return web.json_response(
            {
                "message": "Leaderboard fetched successfully",
                "leaderboard": [
                    {"uid": e.id, "username": e.username, "highScore": e.highScore, "rank": e.rank}
                    for e in cache.top(limit)
                ],
                "total": len(cache),
                "ageSec": cache.age(),
            }
        )

    # Referrals.

    async def referral(self, request: web.Request) -> web.Response:
        body = protocol.Referral.parse(await read_json(request))
        result = await self.svc.referrals.settle(body.referrerId, body.referredId)
        return web.json_response(result.to_payload())

    async def signup_referral(self, request: web.Request) -> web.Response:
        body = protocol.SignupReferral.parse(await read_json(request))
        result = await self.svc.referrals.settle_signup(
            body.newUserId, referrer_id=body.referrerId, referrer_username=body.referrerUsername
        )
        return web.json_response(result.to_payload())

    async def referral_stats(self, request: web.Request) -> web.Response:
        stats = await self.svc.referrals.stats(request.match_info["userId"])
        return web.json_response({"message": "Referral stats fetched successfully", **stats})

    async def referral_count(self, request: web.Request) -> web.Response:
        user_id = request.match_info["userId"]
        user = await self.svc.scores.load(user_id, "User not found in database")
        return web.json_response(
            {"message": "Referral count fetched successfully", "userId": user_id, "referralCount": user.referralCount}
        )

    async def update_referral_count(self, request: web.Request) -> web.Response:
        body = protocol.ReferralCount.parse(await read_json(request))
        count = await self.svc.users.set_referral_count(body.userId, body.referralCount)
        return web.json_response(
            {"message": "Referral count updated successfully", "userId": body.userId, "referralCount": count}
        )
