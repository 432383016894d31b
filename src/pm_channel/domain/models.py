"""Domain models for pm_channel — pure dataclasses."""

import logging
from dataclasses import dataclass, field
from typing import Any

from config.settings import Settings
from src.pm_common.enums import ChannelStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    destination: str
    token: str
    amount: int  # raw units

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Allocation":
        return cls(
            destination=str(data.get("destination") or data.get("participant")),
            token=str(data.get("token") or data.get("asset")),
            amount=int(data["amount"]),
        )


@dataclass(frozen=True)
class SignedState:
    """Channel state as prepared by the clearing node (carries its signature)."""

    intent: int
    version: int
    data: str
    allocations: tuple[Allocation, ...]
    server_signature: str = ""

    @classmethod
    def from_wire(cls, state: dict[str, Any], server_signature: str = "") -> "SignedState":
        return cls(
            intent=int(state["intent"]),
            version=int(state["version"]),
            data=str(state.get("state_data") or state.get("data") or "0x"),
            allocations=tuple(Allocation.from_wire(a) for a in state.get("allocations") or ()),
            server_signature=server_signature,
        )


@dataclass
class Channel:
    """Locally tracked channel. Version counters are monotonic."""

    channel_id: str | None = None
    status: ChannelStatus = ChannelStatus.NONE
    on_chain_version: int = 0
    off_chain_version: int = 0
    allocations: dict[str, int] = field(default_factory=dict)  # participant -> raw amount
    funding_tx: str | None = None  # set once phase (a) is confirmed

    @property
    def is_open(self) -> bool:
        return self.status is ChannelStatus.OPEN and self.channel_id is not None

    def observe_off_chain(self, version: int) -> bool:
        if version < self.off_chain_version:
            logger.warning(
                "Ignoring off-chain version %d < %d for channel %s",
                version, self.off_chain_version, self.channel_id,
            )
            return False
        self.off_chain_version = version
        return True

    def observe_on_chain(self, version: int) -> bool:
        if version < self.on_chain_version:
            return False
        self.on_chain_version = version
        return True

    def set_allocations(self, allocations: tuple[Allocation, ...]) -> None:
        self.allocations = {a.destination: a.amount for a in allocations}


@dataclass(frozen=True)
class ChannelConfig:
    chain_id: int
    token: str
    custody_address: str
    deposit_amount: int  # raw units locked by the funding deposit
    chain_timeout: float
    query_timeout: float

    @classmethod
    def from_settings(cls, s: Settings) -> "ChannelConfig":
        return cls(
            chain_id=s.CHAIN_ID,
            token=s.TOKEN_ADDRESS,
            custody_address=s.CUSTODY_ADDRESS,
            deposit_amount=s.CHANNEL_DEPOSIT_AMOUNT,
            chain_timeout=s.CHAIN_TIMEOUT_SECONDS,
            query_timeout=s.QUERY_TIMEOUT_SECONDS,
        )
