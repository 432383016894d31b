"""SessionClient — the protocol session with a clearing node.

Turns correlated wire messages into a few awaitable operations:
connect / ensure_channel / transfer / query_balances / close_channel / disconnect.

One transport per session. A single read-loop task feeds every inbound frame
to the MessageCorrelator in arrival order; pushes are routed to the LedgerView,
the ChannelManager and user subscriptions. There is no implicit retry: a caller
that re-issues a transfer must reuse its nonce, and a nonce that has been sent
once is never sent again by this client.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

from config.settings import settings
from src.pm_channel.application.channel_manager import ChannelManager
from src.pm_channel.domain.models import Channel, ChannelConfig
from src.pm_channel.domain.ports import OnChainGatewayProtocol
from src.pm_common.datetime_utils import now_ms, utc_now
from src.pm_common.enums import NotificationKind, RpcMethod
from src.pm_common.enums import SessionState as S
from src.pm_common.errors import (
    AppError,
    AuthenticationFailedError,
    InsufficientBalanceError,
    InvalidStateError,
    InvalidTradeError,
    NonceConsumedError,
    RemoteError,
    RequestTimeoutError,
    SettlementFailedError,
    TransportError,
)
from src.pm_ledger.application.ledger_view import LedgerView
from src.pm_ledger.domain.models import AssetRegistry, LedgerSnapshot, TransferResult
from src.pm_session.domain.models import (
    AUTH_POLICY_PRIMARY_TYPE,
    AUTH_POLICY_TYPES,
    Session,
    SessionConfig,
    SessionKeyProtocol,
)
from src.pm_session.domain.ports import TransportProtocol, WalletSignerProtocol
from src.pm_session.domain.rpc import RpcMessage, RpcRequest, encode_request
from src.pm_session.domain.state_machine import LEDGER_STATES, SessionStateMachine
from src.pm_session.engine.correlator import MessageCorrelator
from src.pm_session.infrastructure.signers import SessionKey

logger = logging.getLogger(__name__)

Handler = Callable[[RpcMessage], None]
ALL_NOTIFICATIONS = "all"


class SessionClient:
    def __init__(
        self,
        transport: TransportProtocol,
        wallet: WalletSignerProtocol,
        *,
        onchain: OnChainGatewayProtocol | None = None,
        config: SessionConfig | None = None,
        channel_config: ChannelConfig | None = None,
        assets: AssetRegistry | None = None,
        key_factory: Callable[[], SessionKeyProtocol] = SessionKey.generate,
    ) -> None:
        self._transport = transport
        self._wallet = wallet
        self._config = config or SessionConfig.from_settings(settings)
        self._assets = assets or AssetRegistry(default_decimals=settings.ASSET_DECIMALS)
        self._key_factory = key_factory
        self._state = SessionStateMachine()
        self._correlator: MessageCorrelator | None = None
        self._reader: asyncio.Task[None] | None = None
        self._session: Session | None = None
        self._consumed_nonces: set[str] = set()
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._ledger = LedgerView(self, self._assets, self._config.query_timeout)
        self._channels = ChannelManager(
            self,
            self._state,
            wallet,
            onchain,
            channel_config or ChannelConfig.from_settings(settings),
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> S:
        return self._state.state

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def address(self) -> str:
        return self._wallet.address

    @property
    def ledger(self) -> LedgerView:
        return self._ledger

    @property
    def channels(self) -> ChannelManager:
        return self._channels

    @property
    def assets(self) -> AssetRegistry:
        return self._assets

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> Session:
        """Open the transport and authenticate a fresh session key.

        Raises TransportError if the node is unreachable, AuthenticationFailedError
        if the challenge is rejected, RequestTimeoutError if the handshake stalls.
        """
        if self._state.state is S.ERROR:
            self._state.transition(S.DISCONNECTED, "reconnect")
        self._state.require("connect", {S.DISCONNECTED})
        self._state.transition(S.CONNECTING, self._config.application)
        self._correlator = MessageCorrelator(self._transport.send, self._on_unsolicited)
        try:
            await asyncio.wait_for(self._transport.open(), self._config.connect_timeout)
        except (asyncio.TimeoutError, TransportError) as e:
            self._state.transition(S.DISCONNECTED, "transport open failed")
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"connect timed out after {self._config.connect_timeout}s") from e
        self._reader = asyncio.create_task(
            self._read_loop(self._correlator), name="session-read-loop"
        )
        self._state.transition(S.AUTHENTICATING, "transport open")

        self._session = Session(
            local_identity=self._wallet.address,
            key=self._key_factory(),
            params=self._config.new_params(),
        )
        try:
            await self._authenticate(self._session)
        except AppError as e:
            logger.error("Authentication failed: %s", e.message)
            await self._teardown(e, S.ERROR)
            if isinstance(e, (AuthenticationFailedError, RequestTimeoutError, TransportError)):
                raise
            raise AuthenticationFailedError(e.message) from e

        self._session.authenticated = True
        self._state.transition(S.AUTHENTICATED, f"session key {self._session.session_key_address}")
        try:
            await self._channels.refresh()
        except AppError as e:
            logger.warning("Channel discovery after auth failed: %s", e.message)
        return self._session

    async def _authenticate(self, session: Session) -> None:
        challenge_msg = await self.request(
            RpcMethod.AUTH_REQUEST.value,
            session.auth_request_params(),
            timeout=self._config.connect_timeout,
            expect={RpcMethod.AUTH_CHALLENGE.value},
            signed=False,
        )
        challenge = (challenge_msg or {}).get("challenge_message")
        if not challenge:
            raise AuthenticationFailedError("no challenge in auth_challenge")

        # Signed over exactly the params declared in auth_request.
        signature = self._wallet.sign_typed(
            session.auth_domain(),
            AUTH_POLICY_TYPES,
            AUTH_POLICY_PRIMARY_TYPE,
            session.auth_policy(str(challenge)),
        )
        result = await self._send(
            RpcMethod.AUTH_VERIFY.value,
            {"challenge": challenge},
            signatures=[signature],
            timeout=self._config.connect_timeout,
            expect={RpcMethod.AUTH_VERIFY.value},
        )
        if not isinstance(result, dict) or result.get("success") is False:
            raise AuthenticationFailedError("verification rejected")
        key = result.get("session_key")
        if key and str(key).lower() != session.session_key_address.lower():
            raise AuthenticationFailedError(f"node authorized a different session key {key}")
        logger.info("Authenticated %s with session key %s",
                    session.local_identity, session.session_key_address)

    async def disconnect(self) -> None:
        """Close the session. In-flight requests fail with TransportError."""
        await self._teardown(TransportError("session disconnected"), S.DISCONNECTED)

    async def _teardown(self, error: AppError, final_state: S) -> None:
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if self._correlator is not None:
            self._correlator.fail_all(error)
        try:
            await self._transport.close()
        except TransportError as e:
            logger.warning("Transport close failed: %s", e.message)
        if self._session is not None:
            self._session.destroy()
            self._session = None
        self._ledger.clear()
        self._channels.suspend()
        if final_state is S.ERROR and self._state.can_transition(S.ERROR):
            self._state.transition(S.ERROR, error.message)
        else:
            self._state.transition(S.DISCONNECTED, error.message)

    async def _read_loop(self, correlator: MessageCorrelator) -> None:
        try:
            async for raw in self._transport.messages():
                correlator.dispatch(raw)
            error = TransportError("connection closed by peer")
        except TransportError as e:
            error = e
        logger.warning("Read loop ended: %s", error.message)
        correlator.fail_all(error)
        if self._reader is asyncio.current_task():
            self._reader = None
            if self._session is not None:
                self._session.destroy()
                self._session = None
            self._ledger.clear()
            self._channels.suspend()
            self._state.transition(S.DISCONNECTED, error.message)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
        expect: Iterable[str] | None = None,
        signed: bool = True,
    ) -> Any:
        """Send one RPC request (signed by the session key) and return its result."""
        signatures: list[str] = []
        if signed:
            if self._session is None:
                raise InvalidStateError(method, self._state.state.value)
            request = self._build(method, params)
            signatures.append(self._session.key.sign_payload(request.payload()))
            return await self._dispatch(request, signatures, timeout, expect)
        return await self._send(method, params, signatures=signatures,
                                timeout=timeout, expect=expect)

    async def _send(
        self,
        method: str,
        params: dict[str, Any],
        *,
        signatures: list[str],
        timeout: float | None,
        expect: Iterable[str] | None,
    ) -> Any:
        return await self._dispatch(self._build(method, params), signatures, timeout, expect)

    def _build(self, method: str, params: dict[str, Any]) -> RpcRequest:
        if self._correlator is None or self._reader is None:
            raise InvalidStateError(method, self._state.state.value)
        return RpcRequest(self._correlator.next_id(), method, params, now_ms())

    async def _dispatch(
        self,
        request: RpcRequest,
        signatures: list[str],
        timeout: float | None,
        expect: Iterable[str] | None,
    ) -> Any:
        if self._correlator is None:
            raise InvalidStateError(request.method, self._state.state.value)
        message = await self._correlator.send(
            request,
            encode_request(request, signatures),
            timeout=timeout or self._config.query_timeout,
            expect=expect,
        )
        return message.result

    async def query_balances(self, timeout: float | None = None) -> LedgerSnapshot:
        self._state.require("query_balances", LEDGER_STATES)
        return await self._ledger.query(timeout)

    async def transfer(
        self,
        destination: str,
        asset: str,
        amount: int,
        nonce: str,
        *,
        timeout: float | None = None,
    ) -> TransferResult:
        """Off-chain ledger transfer of ``amount`` raw units.

        The nonce is consumed as soon as the request is handed to the transport.
        On SettlementFailedError the transfer may still have been applied:
        query the ledger before deciding anything.
        """
        self._state.require("transfer", LEDGER_STATES)
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidTradeError(f"transfer amount must be a positive raw integer, got {amount!r}")
        if not nonce:
            raise InvalidTradeError("transfer nonce is required")
        if nonce in self._consumed_nonces:
            raise NonceConsumedError(nonce)
        self._consumed_nonces.add(nonce)

        deadline = timeout or self._config.transfer_timeout
        try:
            result = await self.request(
                RpcMethod.TRANSFER.value,
                {
                    "destination": destination,
                    "allocations": [{"asset": asset, "amount": str(amount)}],
                    "nonce": nonce,
                },
                timeout=deadline,
            )
        except InvalidStateError:
            # never sent: the nonce stays free for a retry
            self._consumed_nonces.discard(nonce)
            raise
        except RequestTimeoutError as e:
            raise SettlementFailedError(
                "transfer", nonce, f"no confirmation within {deadline}s", self._state.state.value
            ) from e
        except TransportError as e:
            raise SettlementFailedError(
                "transfer", nonce, e.message, self._state.state.value
            ) from e
        except RemoteError as e:
            if "insufficient" in e.detail.lower():
                available = self._ledger.snapshot.amount(asset) if self._ledger.snapshot else None
                raise InsufficientBalanceError(asset, amount, available, nonce) from e
            raise

        transactions = _transactions(result)
        transfer_id = str(transactions[0].get("id")) if transactions else nonce
        logger.info("Transfer %s: %d %s -> %s (nonce=%s)",
                    transfer_id, amount, asset, destination, nonce)
        return TransferResult(
            transfer_id=transfer_id,
            destination=destination,
            asset=asset,
            amount=amount,
            nonce=nonce,
            confirmed_at=utc_now(),
            transactions=tuple(transactions),
        )

    def is_nonce_consumed(self, nonce: str) -> bool:
        return nonce in self._consumed_nonces

    async def get_config(self) -> dict[str, Any]:
        """Public node config. Registers the advertised asset decimals."""
        result = await self.request(RpcMethod.GET_CONFIG.value, {}, signed=self._session is not None)
        if isinstance(result, dict):
            self._assets.load_config(result)
        return result

    async def get_channels(self) -> Channel:
        self._state.require("get_channels", LEDGER_STATES)
        return await self._channels.refresh()

    async def get_ledger_transactions(
        self, asset: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Recent ledger transactions for this wallet, newest first (reconciliation)."""
        self._state.require("get_ledger_transactions", LEDGER_STATES)
        params: dict[str, Any] = {"account_id": self.address, "limit": limit, "sort": "desc"}
        if asset:
            params["asset"] = asset
        result = await self.request(RpcMethod.GET_LEDGER_TRANSACTIONS.value, params)
        return _transactions(result, key="ledger_transactions")

    async def ping(self) -> None:
        self._state.require("ping", LEDGER_STATES)
        await self.request(RpcMethod.PING.value, {}, expect={RpcMethod.PONG.value})

    # ------------------------------------------------------------------
    # Channel delegates
    # ------------------------------------------------------------------

    async def ensure_channel(self) -> str:
        return await self._channels.ensure_channel()

    async def resize_channel(self, delta: int) -> Channel:
        return await self._channels.resize_channel(delta)

    async def close_channel(self) -> str:
        return await self._channels.close_channel()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def on(self, kind: str, handler: Handler) -> None:
        """Subscribe to a push kind (bu, cu, tr, asu, error) or ``all``."""
        self._handlers[kind].append(handler)

    def off(self, kind: str, handler: Handler) -> None:
        if handler in self._handlers.get(kind, []):
            self._handlers[kind].remove(handler)

    def _on_unsolicited(self, message: RpcMessage) -> None:
        kind = message.method
        if kind == NotificationKind.BALANCE_UPDATE.value:
            self._ledger.apply_push(message.result, message.timestamp)
        elif kind == NotificationKind.CHANNEL_UPDATE.value:
            self._channels.apply_update(message.result)
        elif kind == NotificationKind.CHANNELS.value:
            self._channels.sync_from_list(message.result)
        elif kind == NotificationKind.ASSETS.value and isinstance(message.result, dict):
            self._assets.load_config(message.result)
        elif message.is_error:
            logger.warning("Unsolicited error from node: %s", message.error_message)
        for handler in [*self._handlers.get(kind, []), *self._handlers.get(ALL_NOTIFICATIONS, [])]:
            try:
                handler(message)
            except Exception:
                logger.exception("Notification handler for %s failed", kind)


def _transactions(result: Any, key: str = "transactions") -> list[dict[str, Any]]:
    if isinstance(result, list):
        return [t for t in result if isinstance(t, dict)]
    if isinstance(result, dict):
        return [t for t in result.get(key) or [] if isinstance(t, dict)]
    return []
