"""ChannelManager — two-phase channel lifecycle (on-chain funding + off-chain ack).

ensure_channel: fund on-chain (approve + deposit), then create_channel off-chain.
  Concurrent callers share one in-flight task. A confirmed deposit is remembered,
  so a retry after a failed off-chain phase never re-funds.
resize_channel / close_channel: the node prepares a signed state; its version
  must be exactly last known + 1, then we countersign and submit on-chain.
  The channel changes status only after the receipt is confirmed.
"""

import asyncio
import logging
from typing import Any

from src.pm_channel.domain.models import Channel, ChannelConfig, SignedState
from src.pm_channel.domain.ports import OnChainGatewayProtocol
from src.pm_channel.infrastructure.custody import (
    encode_close,
    encode_deposit,
    encode_resize,
    state_hash,
)
from src.pm_common.enums import ChannelStatus, RpcMethod
from src.pm_common.enums import SessionState as S
from src.pm_common.errors import (
    ChainTransactionFailedError,
    ChannelNotFoundError,
    ConfigurationError,
    InvalidTradeError,
    ProtocolError,
    StaleStateError,
)
from src.pm_session.domain.ports import RpcRequesterProtocol, WalletSignerProtocol
from src.pm_session.domain.state_machine import CHANNEL_REQUEST_STATES, SessionStateMachine

logger = logging.getLogger(__name__)


class ChannelManager:
    def __init__(
        self,
        requester: RpcRequesterProtocol,
        state_machine: SessionStateMachine,
        wallet: WalletSignerProtocol,
        onchain: OnChainGatewayProtocol | None,
        config: ChannelConfig,
    ) -> None:
        self._requester = requester
        self._state = state_machine
        self._wallet = wallet
        self._onchain = onchain
        self._config = config
        self._channel = Channel()
        self._inflight: asyncio.Future[str] | None = None
        # Single writer for resize/close; ensure_channel is serialized by _inflight.
        self._lock = asyncio.Lock()

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def channel_id(self) -> str | None:
        return self._channel.channel_id

    async def ensure_channel(self) -> str:
        """Return the open channel id, creating (once) if needed."""
        self._state.require("ensure_channel", CHANNEL_REQUEST_STATES)
        if self._channel.is_open:
            return self._channel.channel_id  # type: ignore[return-value]
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._create())
            self._inflight.add_done_callback(self._clear_inflight)
        # Shielded: one caller timing out must not cancel creation for the others.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Future[str]) -> None:
        self._inflight = None
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Channel creation failed: %s", task.exception())

    async def _create(self) -> str:
        if self._channel.status in (ChannelStatus.NONE, ChannelStatus.CLOSED):
            self._channel = Channel()
        self._channel.status = ChannelStatus.PENDING
        self._state.transition(S.CHANNEL_PENDING, "ensure_channel")
        try:
            if self._channel.funding_tx is None:
                self._channel.funding_tx = await self._fund()
            else:
                logger.info("Reusing confirmed deposit %s", self._channel.funding_tx)

            result = await self._requester.request(
                RpcMethod.CREATE_CHANNEL.value,
                {"chain_id": self._config.chain_id, "token": self._config.token},
                timeout=self._config.chain_timeout,
            )
            channel_id = _require_channel_id(result)
            self._channel.channel_id = channel_id
            if isinstance(result.get("state"), dict):
                state = SignedState.from_wire(result["state"], result.get("server_signature", ""))
                self._channel.observe_off_chain(state.version)
                self._channel.set_allocations(state.allocations)
            self._channel.status = ChannelStatus.OPEN
        except Exception:
            # Funded but unacknowledged channels stay pending for a retry.
            if self._state.state is S.CHANNEL_PENDING:
                self._state.transition(S.AUTHENTICATED, "channel creation failed")
            raise
        self._state.transition(S.CHANNEL_ACTIVE, f"channel {channel_id} open")
        logger.info("Channel %s open", channel_id)
        return channel_id

    async def _fund(self) -> str:
        onchain = self._require_onchain()
        cfg = self._config
        approve_tx = await onchain.approve_token(cfg.token, cfg.custody_address, cfg.deposit_amount)
        await self._confirm(approve_tx)
        deposit_tx = await onchain.submit_transaction(
            cfg.custody_address,
            encode_deposit(self._wallet.address, cfg.token, cfg.deposit_amount),
        )
        await self._confirm(deposit_tx)
        logger.info("Deposited %d raw units, tx=%s", cfg.deposit_amount, deposit_tx)
        return deposit_tx

    async def resize_channel(self, delta: int) -> Channel:
        """Move ``delta`` raw units into (positive) or out of (negative) the channel."""
        if delta == 0:
            raise InvalidTradeError("resize delta must be non-zero")
        self._state.require("resize_channel", {S.CHANNEL_ACTIVE})
        async with self._lock:
            channel = self._require_open()
            channel.status = ChannelStatus.RESIZING
            try:
                result = await self._requester.request(
                    RpcMethod.RESIZE_CHANNEL.value,
                    {
                        "channel_id": channel.channel_id,
                        "resize_amount": str(delta),
                        "allocate_amount": "0",
                        "funds_destination": self._wallet.address,
                    },
                    timeout=self._config.chain_timeout,
                )
                state = self._checked_state("resize_channel", result)
                tx_hash = await self._submit_state(encode_resize, state)
            except Exception:
                if channel.status is ChannelStatus.RESIZING:
                    channel.status = ChannelStatus.OPEN
                raise
            channel.observe_off_chain(state.version)
            channel.observe_on_chain(state.version)
            channel.set_allocations(state.allocations)
            channel.status = ChannelStatus.OPEN
        logger.info("Channel %s resized by %d (v%d, tx=%s)",
                    channel.channel_id, delta, state.version, tx_hash)
        return channel

    async def close_channel(self) -> str:
        """Cooperative close. Returns the confirmed on-chain transaction hash."""
        self._state.require("close_channel", {S.CHANNEL_ACTIVE})
        async with self._lock:
            channel = self._require_open()
            self._state.transition(S.CLOSING, "close_channel")
            channel.status = ChannelStatus.CLOSING
            try:
                result = await self._requester.request(
                    RpcMethod.CLOSE_CHANNEL.value,
                    {"channel_id": channel.channel_id, "funds_destination": self._wallet.address},
                    timeout=self._config.chain_timeout,
                )
                state = self._checked_state("close_channel", result)
                tx_hash = await self._submit_state(encode_close, state)
            except Exception:
                if channel.status is ChannelStatus.CLOSING:
                    channel.status = ChannelStatus.OPEN
                if self._state.state is S.CLOSING:
                    self._state.transition(S.CHANNEL_ACTIVE, "close failed")
                raise
            channel.observe_off_chain(state.version)
            channel.observe_on_chain(state.version)
            channel.set_allocations(state.allocations)
            channel.status = ChannelStatus.CLOSED
            channel.funding_tx = None
            self._state.transition(S.CLOSED, f"channel {channel.channel_id} closed")
        logger.info("Channel %s closed, tx=%s", channel.channel_id, tx_hash)
        return tx_hash

    async def refresh(self) -> Channel:
        """Re-fetch channel list from the node (recovery after StaleStateError)."""
        result = await self._requester.request(
            RpcMethod.GET_CHANNELS.value,
            {"participant": self._requester.address},
            timeout=self._config.query_timeout,
        )
        self.sync_from_list(result)
        return self._channel

    def sync_from_list(self, payload: Any) -> None:
        """Adopt an open channel reported by the node (get_channels / channels push)."""
        for entry in _channel_entries(payload):
            if str(entry.get("status", "")).lower() != ChannelStatus.OPEN.value:
                continue
            token = entry.get("token")
            if token and str(token).lower() != self._config.token.lower():
                continue
            channel_id = str(entry["channel_id"])
            version = int(entry.get("version") or 0)
            if self._channel.channel_id == channel_id:
                self._channel.observe_off_chain(version)
                if self._channel.status is ChannelStatus.NONE:
                    self._channel.status = ChannelStatus.OPEN
                    logger.info("Channel %s re-confirmed by the node (v%d)", channel_id, version)
                self._activate("channel re-confirmed")
                return
            if self._channel.is_open or self._inflight is not None:
                return
            self._channel = Channel(
                channel_id=channel_id,
                status=ChannelStatus.OPEN,
                on_chain_version=version,
                off_chain_version=version,
            )
            logger.info("Discovered open channel %s (v%d)", channel_id, version)
            self._activate("existing channel")
            return

    def suspend(self) -> None:
        """Connection lost: the channel id is kept but must be re-confirmed by the node.

        Until a later ``get_channels`` lists it as open again, the channel is not
        usable and a fresh ``ensure_channel`` would create a new one.
        """
        if self._channel.channel_id is None:
            return
        if self._channel.status in (
            ChannelStatus.OPEN, ChannelStatus.RESIZING, ChannelStatus.CLOSING
        ):
            self._channel.status = ChannelStatus.NONE
            logger.info("Channel %s unverified until the node lists it again",
                        self._channel.channel_id)

    def _activate(self, reason: str) -> None:
        if self._channel.is_open and self._state.state in (S.AUTHENTICATED, S.CLOSED):
            self._state.transition(S.CHANNEL_ACTIVE, reason)

    def apply_update(self, payload: Any) -> None:
        """Handle a ``cu`` push: versions only ever move forward."""
        if not isinstance(payload, dict) or payload.get("channel_id") != self._channel.channel_id:
            return
        if "version" in payload:
            self._channel.observe_off_chain(int(payload["version"]))
        if isinstance(payload.get("state"), dict):
            state = SignedState.from_wire(payload["state"])
            if self._channel.observe_off_chain(state.version):
                self._channel.set_allocations(state.allocations)

    def _checked_state(self, operation: str, result: Any) -> SignedState:
        if not isinstance(result, dict) or not isinstance(result.get("state"), dict):
            raise ProtocolError(f"{operation} response carries no state")
        if result.get("channel_id") not in (None, self._channel.channel_id):
            raise ProtocolError(f"{operation} response is for channel {result['channel_id']}")
        state = SignedState.from_wire(result["state"], result.get("server_signature", ""))
        expected = self._channel.off_chain_version + 1
        if state.version != expected:
            raise StaleStateError(operation, expected, state.version)
        return state

    async def _submit_state(self, encoder: Any, state: SignedState) -> str:
        onchain = self._require_onchain()
        channel_id = self._channel.channel_id or ""
        own_signature = self._wallet.sign(state_hash(channel_id, state))
        signatures = [own_signature] + ([state.server_signature] if state.server_signature else [])
        tx_hash = await onchain.submit_transaction(
            self._config.custody_address, encoder(channel_id, state, signatures)
        )
        await self._confirm(tx_hash)
        return tx_hash

    async def _confirm(self, tx_hash: str) -> None:
        receipt = await self._require_onchain().await_confirmation(
            tx_hash, self._config.chain_timeout
        )
        if not receipt.succeeded:
            raise ChainTransactionFailedError(tx_hash, f"reverted in block {receipt.block_number}")

    def _require_open(self) -> Channel:
        if not self._channel.is_open:
            raise ChannelNotFoundError()
        return self._channel

    def _require_onchain(self) -> OnChainGatewayProtocol:
        if self._onchain is None:
            raise ConfigurationError("no on-chain gateway configured")
        return self._onchain


def _require_channel_id(result: Any) -> str:
    if isinstance(result, dict):
        channel_id = result.get("channel_id") or (result.get("channel") or {}).get("channel_id")
        if channel_id:
            return str(channel_id)
    raise ProtocolError("create_channel response carries no channel_id")


def _channel_entries(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [e for e in payload if isinstance(e, dict)]
    if isinstance(payload, dict):
        return [e for e in payload.get("channels") or [] if isinstance(e, dict)]
    return []
