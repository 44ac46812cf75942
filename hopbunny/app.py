"""HTTP entrypoint for the score & rank ledger.

This server does NOT serve the game client. Host the static site separately.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from aiohttp import web

from hopbunny.ledger.config import LedgerConfig
from hopbunny.ledger.errors import LedgerError
from hopbunny.ledger.idempotency import IdempotencyGuard
from hopbunny.ledger.rank_cache import RankCache
from hopbunny.ledger.referrals import ReferralSettlement
from hopbunny.ledger.scores import ScoreService
from hopbunny.ledger.users import UserDirectory
from hopbunny.net.auth import TokenVerifier
from hopbunny.net.http import FAILURE_MESSAGES, ApiHandlers
from hopbunny.storage.memory import MemoryStore
from hopbunny.storage.sqlite import SqliteStore
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


class LedgerService:
    def __init__(self, config: LedgerConfig, store=None):
        self.config = config
        self.start_time = time.time()

        if store is None:
            store = SqliteStore(config.sqlite_path) if config.sqlite_enabled else MemoryStore()
        self.store = store

        self.rank_cache = RankCache(store, ttl_sec=config.rank_ttl_sec)
        self.guard = IdempotencyGuard(ttl_ms=config.idempotency_ttl_ms, max_keys=config.idempotency_max_keys)
        self.scores = ScoreService(store, self.rank_cache, self.guard)
        self.users = UserDirectory(store, self.scores, self.rank_cache)
        self.referrals = ReferralSettlement(
            store,
            self.scores,
            referrer_bonus=config.referrer_bonus,
            referred_bonus=config.referred_bonus,
        )
        self.auth = TokenVerifier(config.auth_secret)

        self._running = False
        self._refresh_task: asyncio.Task | None = None

    async def start(self) -> None:
        self.store.init()
        await self.rank_cache.refresh()
        self._running = True
        if self.config.rank_refresh_sec > 0:
            self._refresh_task = asyncio.create_task(self._refresh_loop())
        logger.info("Ledger started (%d users ranked)", len(self.rank_cache))

    async def stop(self) -> None:
        self._running = False
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        await self.rank_cache.close()
        await self.store.close()

    async def _refresh_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.rank_refresh_sec)
            await self.rank_cache.refresh()

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverVersion": self.config.server_version,
            "referrerBonus": self.config.referrer_bonus,
            "referredBonus": self.config.referred_bonus,
        }


def _cors_headers(config: LedgerConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        origin = request.headers.get("Origin")
        headers = {
            **_cors_headers(request.app["config"], origin),
            "Access-Control-Allow-Methods": "GET,POST,PUT,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)

    origin = request.headers.get("Origin")
    for k, v in _cors_headers(request.app["config"], origin).items():
        resp.headers[k] = v
    return resp


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except LedgerError as e:
        if e.status >= 500:
            logger.error("%s %s failed: %s (%r)", request.method, request.path, e.message, e.__cause__)
        else:
            logger.info("%s %s rejected (%d): %s", request.method, request.path, e.status, e.message)
        return web.json_response(e.to_payload(), status=e.status)
    except Exception as e:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        route = request.match_info.route.name
        message = FAILURE_MESSAGES.get(route or "", "Internal server error")
        return web.json_response({"message": message, "error": str(e)}, status=500)


def create_app(config: LedgerConfig, store=None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware, error_middleware])
    svc = LedgerService(config, store=store)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "rankedUsers": len(svc.rank_cache),
                "rankCacheAgeSec": svc.rank_cache.age(),
                **svc.version_payload(),
            }
        )

    async def root(_: web.Request):
        return web.json_response(
            {
                "message": "Hop Bunny API is running!",
                "service": "hopbunny-ledger",
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "version": "/version",
                    "users": "/api/users",
                    "user": "/api/user/{userId}",
                    "updateScore": "/api/update-score",
                    "referral": "/api/referral",
                    "signupReferral": "/api/referral/process-signup-referral",
                    "referralStats": "/api/referral/stats/{userId}",
                    "leaderboard": "/api/leaderboard",
                },
            }
        )

    async def version(_: web.Request):
        return web.json_response(svc.version_payload())

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_get("/version", version)
    ApiHandlers(svc).register(app.router)

    async def preflight(_: web.Request):
        return web.Response(status=204)

    app.router.add_route("OPTIONS", "/{tail:.*}", preflight)

    return app


def main() -> None:
    config = LedgerConfig.from_env()
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
