"""Async API client used by the game frontend bridge and by tooling.

Every call returns a ClientResult; failures are reported, never masked.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import aiohttp

from hopbunny.ledger.models import referral_id
from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class ClientResult:
    ok: bool
    status: int | None = None
    data: dict[str, Any] | None = None
    strategy: str | None = None
    error: str | None = None

    @property
    def duplicate(self) -> bool:
        return bool(self.data and self.data.get("isDuplicate"))

    @property
    def retryable(self) -> bool:
        return not self.ok and (self.status is None or self.status >= 500)


class LedgerClient:
    def __init__(self, base_url: str, session: aiohttp.ClientSession | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> ClientResult:
        url = f"{self.base_url}{path}"
        try:
            async with self._sess().request(method, url, json=body) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    data = None
                ok = 200 <= resp.status < 300
                error = None if ok else str((data or {}).get("message") or resp.reason)
                return ClientResult(ok=ok, status=resp.status, data=data, error=error)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ClientResult(ok=False, error=str(e) or e.__class__.__name__)

    async def get_user(self, user_id: str) -> ClientResult:
        return await self._request("GET", f"/api/user/{user_id}")

    async def submit_score(self, user_id: str, score: int) -> ClientResult:
        res = await self._request("POST", "/api/update-score", {"userId": user_id, "score": score})
        if res.ok:
            logger.info("Score %d saved for %s", score, user_id)
        else:
            logger.warning("Score %d for %s was not saved: %s", score, user_id, res.error)
        return res

    async def credit_referral(
        self,
        user_id: str,
        amount: int,
        *,
        increment_referral_count: bool = False,
        unique_request_id: str | None = None,
    ) -> ClientResult:
        body: dict[str, Any] = {
            "userId": user_id,
            "score": amount,
            "isReferral": True,
            "incrementReferralCount": increment_referral_count,
        }
        if unique_request_id:
            body["uniqueRequestId"] = unique_request_id
        return await self._request("POST", "/api/update-score", body)

    async def _settle_via_scores(self, referrer_id: str, referred_id: str, bonuses: tuple[int, int]) -> ClientResult:
        key = f"referral:{referral_id(referrer_id, referred_id)}"
        first = await self.credit_referral(
            referrer_id, bonuses[0], increment_referral_count=True, unique_request_id=key
        )
        if not first.ok:
            return first
        return await self.credit_referral(referred_id, bonuses[1])

    async def settle_referral(
        self,
        referrer_id: str,
        referred_id: str,
        *,
        bonuses: tuple[int, int] = (500, 200),
    ) -> ClientResult:
        """Settle a referral, walking the endpoints in order until one answers.

        Only transport failures and 5xx answers move on to the next strategy;
        a 4xx or an "already processed" reply is final.
        """
        strategies: list[tuple[str, Callable[[], Awaitable[ClientResult]]]] = [
            (
                "referral-api",
                lambda: self._request("POST", "/api/referral", {"referrerId": referrer_id, "referredId": referred_id}),
            ),
            (
                "signup-referral-api",
                lambda: self._request(
                    "POST",
                    "/api/referral/process-signup-referral",
                    {"referrerId": referrer_id, "newUserId": referred_id},
                ),
            ),
            ("score-api", lambda: self._settle_via_scores(referrer_id, referred_id, bonuses)),
        ]
        res = ClientResult(ok=False, error="no strategy attempted")
        for name, attempt in strategies:
            res = await attempt()
            res.strategy = name
            if not res.retryable:
                if res.ok:
                    logger.info("Referral %s -> %s settled via %s", referrer_id, referred_id, name)
                return res
            logger.warning("Referral strategy %s failed: %s", name, res.error)
        return res
