"""API client: result reporting and the referral fallback chain."""

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from hopbunny.app import create_app
from hopbunny.ledger.models import USERS
from hopbunny.net.client import ClientResult, LedgerClient


@pytest_asyncio.fixture
async def ledger(config, store):
    async with test_utils.TestServer(create_app(config, store=store)) as srv:
        async with LedgerClient(str(srv.make_url("/"))) as cli:
            yield cli


def _fake_api(statuses: dict[str, int], calls: list[str]) -> web.Application:
    """Answer each path with a fixed status and record the order of calls."""

    async def handle(request: web.Request):
        calls.append(request.path)
        status = statuses.get(request.path, 200)
        return web.json_response({"message": f"status {status}", "success": status < 300}, status=status)

    app = web.Application()
    app.router.add_post("/api/referral", handle)
    app.router.add_post("/api/referral/process-signup-referral", handle)
    app.router.add_post("/api/update-score", handle)
    return app


async def _run_fake(statuses, referrer="r1", referred="n1"):
    calls: list[str] = []
    async with test_utils.TestServer(_fake_api(statuses, calls)) as srv:
        async with LedgerClient(str(srv.make_url("/"))) as cli:
            res = await cli.settle_referral(referrer, referred)
    return res, calls


class TestClientResult:
    def test_retryable(self):
        assert ClientResult(ok=False).retryable
        assert ClientResult(ok=False, status=503).retryable
        assert not ClientResult(ok=False, status=404).retryable
        assert not ClientResult(ok=True, status=200).retryable

    def test_duplicate(self):
        assert ClientResult(ok=True, status=200, data={"isDuplicate": True}).duplicate
        assert not ClientResult(ok=True, status=200, data={}).duplicate


@pytest.mark.asyncio
class TestAgainstLedger:
    async def test_submit_score(self, ledger, store, make_user):
        await make_user("u1", score=10)
        res = await ledger.submit_score("u1", 40)
        assert res.ok
        assert res.data["totalScore"] == 50
        assert (await store.get_document(USERS, "u1"))["score"] == 50

    async def test_failure_is_reported_not_masked(self, ledger):
        res = await ledger.submit_score("ghost", 40)
        assert not res.ok
        assert res.status == 404
        assert res.error == "User not found in database"

    async def test_get_user(self, ledger, make_user):
        await make_user("u1", highScore=5)
        res = await ledger.get_user("u1")
        assert res.ok
        assert res.data["highScore"] == 5

    async def test_settle_referral_uses_referral_api(self, ledger, make_user):
        await make_user("r1")
        await make_user("n1")
        res = await ledger.settle_referral("r1", "n1")
        assert res.ok
        assert res.strategy == "referral-api"

        again = await ledger.settle_referral("r1", "n1")
        assert again.ok
        assert again.duplicate
        assert again.strategy == "referral-api"


@pytest.mark.asyncio
class TestFallback:
    async def test_server_error_moves_to_signup_endpoint(self):
        res, calls = await _run_fake({"/api/referral": 503})
        assert res.ok
        assert res.strategy == "signup-referral-api"
        assert calls == ["/api/referral", "/api/referral/process-signup-referral"]

    async def test_last_resort_is_score_api(self):
        res, calls = await _run_fake({"/api/referral": 500, "/api/referral/process-signup-referral": 502})
        assert res.ok
        assert res.strategy == "score-api"
        assert calls[2:] == ["/api/update-score", "/api/update-score"]

    async def test_client_error_is_final(self):
        res, calls = await _run_fake({"/api/referral": 404})
        assert not res.ok
        assert res.status == 404
        assert res.strategy == "referral-api"
        assert calls == ["/api/referral"]

    async def test_everything_down(self):
        res, _ = await _run_fake({"/api/referral": 500, "/api/referral/process-signup-referral": 500, "/api/update-score": 500})
        assert not res.ok
        assert res.status == 500
        assert res.strategy == "score-api"


@pytest.mark.asyncio
async def test_unreachable_server():
    async with LedgerClient("http://127.0.0.1:1", timeout=2.0) as cli:
        res = await cli.submit_score("u1", 10)
    assert not res.ok
    assert res.status is None
    assert res.error
    assert res.retryable
