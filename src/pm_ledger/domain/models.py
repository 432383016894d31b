"""Domain models for pm_ledger — pure dataclasses."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from src.pm_common.errors import ProtocolError
from src.pm_common.units import parse_wire_amount


@dataclass(frozen=True)
class LedgerSnapshot:
    """Off-chain balances per asset, raw units. Immutable: replaced wholesale, never patched."""

    balances: Mapping[str, int]
    observed_at: datetime
    server_timestamp: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "balances", MappingProxyType(dict(self.balances)))

    def amount(self, asset: str) -> int:
        return self.balances.get(asset, 0)

    def diff(self, earlier: "LedgerSnapshot") -> dict[str, int]:
        """Raw-unit change per asset since ``earlier`` (zero deltas omitted)."""
        assets = set(self.balances) | set(earlier.balances)
        deltas = {a: self.amount(a) - earlier.amount(a) for a in sorted(assets)}
        return {a: d for a, d in deltas.items() if d}

    def is_newer_than(self, other: "LedgerSnapshot | None") -> bool:
        if other is None:
            return True
        if self.server_timestamp is None or other.server_timestamp is None:
            return self.observed_at >= other.observed_at
        return self.server_timestamp >= other.server_timestamp


@dataclass
class AssetRegistry:
    """Decimal precision per asset symbol; unknown assets use the default."""

    default_decimals: int
    decimals_by_asset: dict[str, int] = field(default_factory=dict)

    def decimals(self, asset: str) -> int:
        return self.decimals_by_asset.get(asset.lower(), self.default_decimals)

    def register(self, asset: str, decimals: int) -> None:
        self.decimals_by_asset[asset.lower()] = decimals

    def load_config(self, config: dict[str, Any]) -> None:
        for asset in config.get("assets") or ():
            symbol = asset.get("symbol")
            if symbol and asset.get("decimals") is not None:
                self.register(symbol, int(asset["decimals"]))

    def parse_balances(self, entries: list[dict[str, Any]]) -> dict[str, int]:
        """Raw balances per asset. Raises ProtocolError on a malformed entry."""
        balances: dict[str, int] = {}
        for entry in entries:
            try:
                asset = str(entry["asset"])
                balances[asset] = parse_wire_amount(entry["amount"], self.decimals(asset))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ProtocolError(f"bad balance entry {entry!r}: {e}") from e
        return balances


@dataclass(frozen=True)
class TransferResult:
    transfer_id: str
    destination: str
    asset: str
    amount: int  # raw units
    nonce: str
    confirmed_at: datetime
    transactions: tuple[dict[str, Any], ...] = ()
