# tests/integration/test_session_flow.py
"""End-to-end session flows against the scripted clearing node.

Covers authentication, concurrent channel creation, transfers (including a
transfer whose response is lost after the node applied it) and transport loss.
"""

import asyncio

import pytest

from src.pm_common.enums import SessionState as S
from src.pm_common.errors import (
    AuthenticationFailedError,
    InsufficientBalanceError,
    InvalidStateError,
    InvalidTradeError,
    NonceConsumedError,
    SettlementFailedError,
    TransportError,
)
from src.pm_session.application.client import SessionClient
from src.pm_session.domain.rpc import RpcMessage
from tests.fakes import (
    ASSET,
    CHANNEL_ID,
    MARKET_ADDRESS,
    WALLET_ADDRESS,
    FakeClearnode,
    FakeOnChain,
    FakeSessionKey,
    FakeWallet,
)


class TestAuthentication:
    async def test_connect_authenticates_session_key(
        self, session_client: SessionClient, clearnode: FakeClearnode, session_key: FakeSessionKey
    ) -> None:
        session = await session_client.connect()
        try:
            assert session_client.state is S.AUTHENTICATED
            assert session.authenticated
            assert session.session_key_address == session_key.address
            assert clearnode.methods()[:3] == ["auth_request", "auth_verify", "get_channels"]
        finally:
            await session_client.disconnect()
        assert session_key.destroyed
        assert session_client.session is None

    async def test_policy_signs_exactly_the_declared_params(
        self, connected_client: SessionClient, clearnode: FakeClearnode, wallet: FakeWallet
    ) -> None:
        declared = clearnode.requests("auth_request")[0]["req"][2]
        domain, primary_type, policy = wallet.signed_typed[0]
        assert primary_type == "Policy"
        assert domain == {"name": declared["application"]}
        assert policy == {
            "challenge": clearnode.challenge,
            "scope": declared["scope"],
            "wallet": declared["address"],
            "session_key": declared["session_key"],
            "expires_at": declared["expires_at"],
            "allowances": declared["allowances"],
        }
        assert clearnode.requests("auth_request")[0]["sig"] == []
        assert clearnode.requests("auth_verify")[0]["sig"] == ["0x" + "bb" * 65]

    async def test_requests_after_auth_are_signed_by_session_key(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        await connected_client.query_balances()
        assert clearnode.requests("get_ledger_balances")[0]["sig"] == ["0x" + "cc" * 65]

    async def test_rejected_challenge_moves_to_error(
        self, session_client: SessionClient, clearnode: FakeClearnode, session_key: FakeSessionKey
    ) -> None:
        clearnode.reject_auth = True
        with pytest.raises(AuthenticationFailedError):
            await session_client.connect()
        assert session_client.state is S.ERROR
        assert session_key.destroyed
        assert clearnode.closed == 1

        clearnode.reject_auth = False
        await session_client.connect()
        try:
            assert session_client.state is S.AUTHENTICATED
        finally:
            await session_client.disconnect()

    async def test_unreachable_node(
        self, session_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        clearnode.fail_open = True
        with pytest.raises(TransportError):
            await session_client.connect()
        assert session_client.state is S.DISCONNECTED

    async def test_connect_twice_is_rejected(self, connected_client: SessionClient) -> None:
        with pytest.raises(InvalidStateError):
            await connected_client.connect()


class TestStateGuards:
    async def test_operations_before_connect(self, session_client: SessionClient) -> None:
        with pytest.raises(InvalidStateError):
            await session_client.query_balances()
        with pytest.raises(InvalidStateError):
            await session_client.transfer(MARKET_ADDRESS, ASSET, 1, "n-1")
        with pytest.raises(InvalidStateError):
            await session_client.close_channel()

    async def test_operations_after_disconnect(self, connected_client: SessionClient) -> None:
        await connected_client.disconnect()
        assert connected_client.state is S.DISCONNECTED
        with pytest.raises(InvalidStateError):
            await connected_client.query_balances()


class TestChannelScenario:
    async def test_concurrent_ensure_funds_once(
        self, connected_client: SessionClient, clearnode: FakeClearnode, onchain: FakeOnChain
    ) -> None:
        first, second = await asyncio.gather(
            connected_client.ensure_channel(), connected_client.ensure_channel()
        )
        assert first == second == CHANNEL_ID
        assert len(onchain.approvals) == 1
        assert clearnode.methods().count("create_channel") == 1
        assert connected_client.state is S.CHANNEL_ACTIVE


class TestTransfer:
    async def test_transfer_moves_raw_units(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        before = await connected_client.query_balances()
        result = await connected_client.transfer(MARKET_ADDRESS, ASSET, 5_000_000, "n-1")
        after = await connected_client.query_balances()

        assert result.transfer_id == "1"
        assert result.amount == 5_000_000
        params = clearnode.requests("transfer")[0]["req"][2]
        assert params["allocations"] == [{"asset": ASSET, "amount": "5000000"}]
        assert after.diff(before) == {ASSET: -5_000_000}
        assert clearnode.balance(MARKET_ADDRESS) == 5_000_000

    async def test_lost_response_consumes_nonce(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        clearnode.apply_then_silent.add("transfer")
        with pytest.raises(SettlementFailedError) as exc_info:
            await connected_client.transfer(MARKET_ADDRESS, ASSET, 5_000_000, "n-1")
        assert exc_info.value.nonce == "n-1"

        snapshot = await connected_client.query_balances()
        assert snapshot.amount(ASSET) == 95_000_000
        assert connected_client.is_nonce_consumed("n-1")

        clearnode.apply_then_silent.clear()
        with pytest.raises(NonceConsumedError):
            await connected_client.transfer(MARKET_ADDRESS, ASSET, 5_000_000, "n-1")
        assert len(clearnode.requests("transfer")) == 1

        history = await connected_client.get_ledger_transactions(ASSET)
        assert [t["nonce"] for t in history] == ["n-1"]

    async def test_insufficient_funds(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        await connected_client.query_balances()
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await connected_client.transfer(MARKET_ADDRESS, ASSET, 500_000_000, "n-1")
        assert exc_info.value.context["nonce"] == "n-1"
        assert clearnode.balance(WALLET_ADDRESS) == 100_000_000

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    async def test_amount_must_be_positive_raw_integer(
        self, connected_client: SessionClient, amount: object
    ) -> None:
        with pytest.raises(InvalidTradeError):
            await connected_client.transfer(MARKET_ADDRESS, ASSET, amount, "n-1")  # type: ignore[arg-type]
        assert not connected_client.is_nonce_consumed("n-1")


class TestPushesAndTransportLoss:
    async def test_balance_push_updates_ledger(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        received = asyncio.Event()
        connected_client.on("bu", lambda _msg: received.set())
        clearnode.push("bu", {"balance_updates": [{"asset": ASSET, "amount": "42000000"}]})
        await asyncio.wait_for(received.wait(), 1.0)
        assert connected_client.ledger.snapshot is not None
        assert connected_client.ledger.snapshot.amount(ASSET) == 42_000_000

    async def test_all_subscription_sees_error_pushes(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        seen: list[RpcMessage] = []
        received = asyncio.Event()

        def handler(message: RpcMessage) -> None:
            seen.append(message)
            received.set()

        connected_client.on("all", handler)
        clearnode.push("error", {"error": "maintenance"})
        await asyncio.wait_for(received.wait(), 1.0)
        assert seen[0].error_message == "maintenance"

    async def test_drop_fails_in_flight_requests(
        self,
        connected_client: SessionClient,
        clearnode: FakeClearnode,
        session_key: FakeSessionKey,
    ) -> None:
        clearnode.silent.add("get_ledger_balances")
        pending = asyncio.create_task(connected_client.query_balances(timeout=5.0))
        await asyncio.sleep(0.05)
        clearnode.drop_connection()
        with pytest.raises(TransportError):
            await pending
        assert connected_client.state is S.DISCONNECTED
        assert session_key.destroyed
        assert connected_client.ledger.snapshot is None

    async def test_ping_and_config(self, connected_client: SessionClient) -> None:
        await connected_client.ping()
        config = await connected_client.get_config()
        assert config["assets"][0]["symbol"] == ASSET
        assert connected_client.assets.decimals(ASSET) == 6


class TestTransferDuringTeardown:
    async def test_unsent_transfer_leaves_nonce_free(
        self, connected_client: SessionClient, clearnode: FakeClearnode
    ) -> None:
        closing = asyncio.create_task(connected_client.disconnect())
        await asyncio.sleep(0)
        with pytest.raises(InvalidStateError):
            await connected_client.transfer(MARKET_ADDRESS, ASSET, 1_000_000, "n-1")
        await closing
        assert not connected_client.is_nonce_consumed("n-1")
        assert clearnode.requests("transfer") == []
