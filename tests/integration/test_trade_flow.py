# tests/integration/test_trade_flow.py
"""Trade settlement over HTTP: AMM pricing, ledger transfer, receipts, resolution.

The market orchestrator settles through a connected SessionClient, so every
buy is a real transfer on the scripted clearing node.
"""

from httpx import AsyncClient

from src.pm_common.errors import RequestTimeoutError
from src.pm_session.application.client import SessionClient
from tests.fakes import ASSET, MARKET_ADDRESS, WALLET_ADDRESS, FakeClearnode, FakeLedger

UNIT = 1_000_000
MARKET = "MKT-RAIN"


async def _create(api: AsyncClient, **overrides) -> dict:
    body = {
        "title": "Will it rain tomorrow?",
        "ledger_address": MARKET_ADDRESS,
        "subsidy": 70 * UNIT,
        "market_id": MARKET,
    }
    body.update(overrides)
    resp = await api.post("/api/v1/markets", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def _buy(api: AsyncClient, nonce: str, shares: int = 10 * UNIT, outcome: str = "YES",
               **extra):
    body = {"outcome": outcome, "shares": shares, "nonce": nonce, **extra}
    return await api.post(f"/api/v1/markets/{MARKET}/trades", json=body)


class TestSessionEndpoints:
    async def test_status(self, api: AsyncClient) -> None:
        resp = await api.get("/api/v1/session")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["state"] == "authenticated"
        assert data["wallet"] == WALLET_ADDRESS
        assert data["expired"] is False
        assert data["channel_id"] is None

    async def test_balances_raw_and_display(self, api: AsyncClient) -> None:
        resp = await api.get("/api/v1/session/balances")
        assert resp.status_code == 200
        balance = resp.json()["data"]["balances"][ASSET]
        assert balance == {"raw": 100 * UNIT, "display": f"100 {ASSET}"}

    async def test_channel(self, api: AsyncClient, connected_client: SessionClient) -> None:
        resp = await api.post("/api/v1/session/channel")
        assert resp.status_code == 200
        assert resp.json()["data"]["channel_id"] == connected_client.channels.channel_id

        listed = await api.get("/api/v1/session/channel")
        assert listed.status_code == 200
        data = listed.json()["data"]
        assert data["channel_id"] == connected_client.channels.channel_id
        assert data["status"] == "open"


class TestMarketLifecycle:
    async def test_create_and_get(self, api: AsyncClient) -> None:
        created = await _create(api)
        assert created["status"] == "OPEN"
        assert created["price_yes"] == 0.5
        assert created["max_loss"] <= 70 * UNIT

        resp = await api.get(f"/api/v1/markets/{MARKET}")
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == MARKET

        listed = await api.get("/api/v1/markets", params={"status": "OPEN"})
        assert [m["id"] for m in listed.json()["data"]] == [MARKET]

    async def test_unknown_market_is_404(self, api: AsyncClient) -> None:
        resp = await api.get("/api/v1/markets/MKT-NOPE")
        assert resp.status_code == 404
        body = resp.json()
        assert body["code"] == 3001
        assert body["data"] is None

    async def test_duplicate_market_is_409(self, api: AsyncClient) -> None:
        await _create(api)
        resp = await api.post(
            "/api/v1/markets",
            json={"title": "again", "ledger_address": MARKET_ADDRESS, "subsidy": 1,
                  "market_id": MARKET},
        )
        assert resp.status_code == 409


class TestTrading:
    async def test_buy_settles_on_ledger(
        self, api: AsyncClient, clearnode: FakeClearnode
    ) -> None:
        await _create(api)
        resp = await _buy(api, "n-1")
        assert resp.status_code == 200, resp.text
        receipt = resp.json()["data"]
        assert receipt["shares_delta"] == 10 * UNIT
        assert 5 * UNIT < receipt["cost"] < 6 * UNIT
        assert clearnode.balance(MARKET_ADDRESS) == receipt["cost"]
        assert clearnode.balance(WALLET_ADDRESS) == 100 * UNIT - receipt["cost"]

        position = await api.get(f"/api/v1/markets/{MARKET}/positions/{WALLET_ADDRESS}")
        assert position.json()["data"]["yes_shares"] == 10 * UNIT

    async def test_retry_with_same_nonce_settles_once(
        self, api: AsyncClient, clearnode: FakeClearnode
    ) -> None:
        await _create(api)
        first = (await _buy(api, "n-1")).json()["data"]
        second = (await _buy(api, "n-1")).json()["data"]
        assert second["trade_id"] == first["trade_id"]
        assert len(clearnode.requests("transfer")) == 1

    async def test_slippage_rejected(self, api: AsyncClient, clearnode: FakeClearnode) -> None:
        await _create(api)
        resp = await _buy(api, "n-1", max_cost=UNIT)
        assert resp.status_code == 422
        assert resp.json()["code"] == 4002
        assert clearnode.requests("transfer") == []

    async def test_request_id_is_echoed(self, api: AsyncClient) -> None:
        await _create(api)
        resp = await api.post(
            f"/api/v1/markets/{MARKET}/trades",
            json={"outcome": "YES", "shares": UNIT, "nonce": "n-2"},
            headers={"X-Request-ID": "req_trade_retry_1"},
        )
        assert resp.headers["X-Request-ID"] == "req_trade_retry_1"
        assert resp.json()["request_id"] == "req_trade_retry_1"

    async def test_lost_transfer_response_then_reconcile(
        self, api: AsyncClient, clearnode: FakeClearnode
    ) -> None:
        await _create(api)
        clearnode.apply_then_silent.add("transfer")
        resp = await _buy(api, "n-1")
        assert resp.status_code == 504
        body = resp.json()
        assert body["code"] == 4001
        assert body["context"]["state"] == "UNKNOWN"

        # the node applied it: the market account was credited
        assert clearnode.balance(MARKET_ADDRESS) > 0
        market = (await api.get(f"/api/v1/markets/{MARKET}")).json()["data"]
        assert market["q_yes"] == 0

        resp = await api.post(
            f"/api/v1/markets/{MARKET}/reconcile",
            json={"participant": WALLET_ADDRESS, "nonce": "n-1", "applied": True},
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "CONFIRMED"
        assert data["receipt"]["cost"] == clearnode.balance(MARKET_ADDRESS)
        market = (await api.get(f"/api/v1/markets/{MARKET}")).json()["data"]
        assert market["q_yes"] == 10 * UNIT


class TestSellAndResolve:
    async def test_sell_is_paid_from_market_account(
        self, api: AsyncClient, treasury: FakeLedger
    ) -> None:
        await _create(api)
        bought = (await _buy(api, "n-1")).json()["data"]
        resp = await _buy(api, "n-2", shares=10 * UNIT, side="SELL")
        assert resp.status_code == 200, resp.text
        sold = resp.json()["data"]
        assert sold["shares_delta"] == -10 * UNIT
        assert 0 < -sold["cost"] <= bought["cost"]
        assert treasury.transfers[0][:3] == (WALLET_ADDRESS, ASSET, -sold["cost"])

    async def test_resolve_pays_winners(self, api: AsyncClient, treasury: FakeLedger) -> None:
        await _create(api)
        await _buy(api, "n-1", shares=10 * UNIT, outcome="YES")
        await _buy(api, "n-2", shares=4 * UNIT, outcome="NO")

        closed = await api.post(f"/api/v1/markets/{MARKET}/close")
        assert closed.json()["data"]["status"] == "CLOSED"
        assert (await _buy(api, "n-3")).status_code == 422

        resp = await api.post(f"/api/v1/markets/{MARKET}/resolve", json={"outcome": "NO"})
        assert resp.status_code == 200
        report = resp.json()["data"]
        assert report["violations"] == []
        assert report["total_payout"] == 4 * UNIT
        assert report["total_payout"] <= report["total_pool"]
        assert treasury.transfers == [
            (WALLET_ADDRESS, ASSET, 4 * UNIT, f"payout:{MARKET}:{WALLET_ADDRESS}")
        ]

        again = await api.post(f"/api/v1/markets/{MARKET}/resolve", json={"outcome": "YES"})
        assert again.status_code == 422

    async def test_timed_out_payout_reconciled_over_http(
        self, api: AsyncClient, treasury: FakeLedger
    ) -> None:
        await _create(api)
        await _buy(api, "n-1", shares=4 * UNIT, outcome="NO")
        treasury.fail_with = RequestTimeoutError("transfer", 3, 0.3)

        resp = await api.post(f"/api/v1/markets/{MARKET}/resolve", json={"outcome": "NO"})
        report = resp.json()["data"]
        assert report["payouts"][0]["status"] == "UNKNOWN"
        assert WALLET_ADDRESS in report["failed"]

        # an unknown payout may be on the ledger: retry leaves it alone
        treasury.fail_with = None
        retried = (await api.post(f"/api/v1/markets/{MARKET}/payouts/retry")).json()["data"]
        assert retried["payouts"][0]["status"] == "UNKNOWN"
        assert treasury.transfers == []

        resp = await api.post(
            f"/api/v1/markets/{MARKET}/payouts/reconcile",
            json={"participant": WALLET_ADDRESS, "applied": False},
        )
        assert resp.json()["data"]["payouts"][0]["status"] == "FAILED"

        retried = (await api.post(f"/api/v1/markets/{MARKET}/payouts/retry")).json()["data"]
        assert retried["payouts"][0]["status"] == "PAID"
        assert retried["paid"] == 4 * UNIT
        assert treasury.transfers == [
            (WALLET_ADDRESS, ASSET, 4 * UNIT, f"payout:{MARKET}:{WALLET_ADDRESS}:2")
        ]
        stored = (await api.get(f"/api/v1/markets/{MARKET}/resolution")).json()["data"]
        assert stored == retried

    async def test_resolution_of_open_market_is_409(self, api: AsyncClient) -> None:
        await _create(api)
        resp = await api.get(f"/api/v1/markets/{MARKET}/resolution")
        assert resp.status_code == 409
        assert (await api.post(f"/api/v1/markets/{MARKET}/payouts/retry")).status_code == 409


class TestStats:
    async def test_stats_and_trade_history(self, api: AsyncClient) -> None:
        await _create(api)
        yes = (await _buy(api, "n-1", shares=10 * UNIT)).json()["data"]
        no = (await _buy(api, "n-2", shares=4 * UNIT, outcome="NO")).json()["data"]

        resp = await api.get(f"/api/v1/markets/{MARKET}/stats")
        assert resp.status_code == 200
        stats = resp.json()["data"]
        assert stats["trade_count"] == 2
        assert stats["volume"] == yes["cost"] + no["cost"]
        assert stats["traders"] == 1
        assert stats["collected"] == yes["cost"] + no["cost"]
        assert stats["price_yes"] > stats["price_no"]

        history = (await api.get(f"/api/v1/markets/{MARKET}/trades")).json()["data"]
        assert [t["trade_id"] for t in history] == [yes["trade_id"], no["trade_id"]]
        other = await api.get(
            f"/api/v1/markets/{MARKET}/trades", params={"participant": "0x" + "99" * 20}
        )
        assert other.json()["data"] == []

    async def test_stats_of_unknown_market_is_404(self, api: AsyncClient) -> None:
        resp = await api.get("/api/v1/markets/MKT-NOPE/stats")
        assert resp.status_code == 404
