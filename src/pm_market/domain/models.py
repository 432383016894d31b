"""Domain models for pm_market — pure dataclasses, no transport dependency.

Amounts and shares are raw integer units (one share pays one whole asset unit,
i.e. 10**decimals raw, on a winning resolution).
"""

from dataclasses import dataclass, field
from datetime import datetime

from src.pm_amm.domain.lmsr import Pool, Quote
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, Outcome, PayoutStatus, TradeStatus
from src.pm_common.errors import InvalidMarketTransitionError

_NEXT_STATUS: dict[MarketStatus, MarketStatus] = {
    MarketStatus.OPEN: MarketStatus.CLOSED,
    MarketStatus.CLOSED: MarketStatus.RESOLVED,
}


@dataclass
class Market:
    id: str
    title: str
    ledger_address: str  # destination of trade transfers
    asset: str
    liquidity_parameter: int  # b, raw units
    subsidy: int = 0  # creator liquidity funding the market account
    q_yes: int = 0
    q_no: int = 0
    collected: int = 0  # net trade cost received by the market account
    paid_out: int = 0
    status: MarketStatus = MarketStatus.OPEN
    outcome: Outcome | None = None
    created_at: datetime = field(default_factory=utc_now)
    closed_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def pool(self) -> Pool:
        return Pool(self.q_yes, self.q_no)

    @property
    def total_pool(self) -> int:
        """Everything the market account holds for payouts."""
        return self.subsidy + self.collected

    def apply_pool(self, pool: Pool) -> None:
        self.q_yes, self.q_no = pool.q_yes, pool.q_no

    def close(self) -> None:
        self._advance(MarketStatus.CLOSED)
        self.closed_at = utc_now()

    def resolve(self, outcome: Outcome) -> None:
        self._advance(MarketStatus.RESOLVED)
        self.outcome = outcome
        self.resolved_at = utc_now()

    def _advance(self, target: MarketStatus) -> None:
        # One-directional: open -> closed -> resolved.
        if _NEXT_STATUS.get(self.status) is not target:
            raise InvalidMarketTransitionError(self.id, self.status.value, target.value)
        self.status = target


@dataclass
class Position:
    market_id: str
    participant: str
    yes_shares: int = 0
    no_shares: int = 0
    cost_basis: int = 0

    def shares(self, outcome: Outcome) -> int:
        return self.yes_shares if outcome is Outcome.YES else self.no_shares

    def apply(self, outcome: Outcome, delta: int, cost: int) -> None:
        """Apply a confirmed trade. Sells reduce cost basis proportionally."""
        held = self.shares(outcome)
        if delta < 0 and held:
            self.cost_basis -= self.cost_basis * min(-delta, held) // (
                self.yes_shares + self.no_shares
            )
        elif delta > 0:
            self.cost_basis += cost
        if outcome is Outcome.YES:
            self.yes_shares += delta
        else:
            self.no_shares += delta


@dataclass(frozen=True)
class TradeRequest:
    market_id: str
    participant: str
    outcome: Outcome
    shares: int  # signed Δ
    nonce: str
    max_cost: int | None = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.market_id}:{self.participant}:{self.nonce}"

    @property
    def transfer_nonce(self) -> str:
        return f"trade:{self.idempotency_key}"


@dataclass(frozen=True)
class TradeReceipt:
    trade_id: str
    market_id: str
    participant: str
    outcome: Outcome
    cost: int
    shares_delta: int
    transfer_id: str
    nonce: str
    confirmed_at: datetime
    price_after: float


@dataclass
class TradeRecord:
    """Per-request state: priced -> transferring -> confirmed | failed | unknown."""

    request: TradeRequest
    status: TradeStatus = TradeStatus.PRICED
    quote: Quote | None = None
    receipt: TradeReceipt | None = None
    error: str | None = None


@dataclass
class Payout:
    """One winner's payout: pending -> paid | failed | unknown."""

    participant: str
    amount: int
    transfer_id: str | None = None
    status: PayoutStatus = PayoutStatus.PENDING
    attempts: int = 0  # transfers handed to the ledger
    error: str | None = None

    def nonce(self, market_id: str, attempt: int) -> str:
        base = f"payout:{market_id}:{self.participant}"
        return base if attempt <= 1 else f"{base}:{attempt}"


@dataclass
class ResolutionReport:
    market_id: str
    outcome: Outcome
    payouts: list[Payout]
    total_payout: int
    total_pool: int
    violations: list[str] = field(default_factory=list)

    @property
    def failed(self) -> dict[str, str]:
        """Participant -> error for every payout not known to be paid."""
        return {
            p.participant: p.error or p.status.value
            for p in self.payouts
            if p.status in (PayoutStatus.FAILED, PayoutStatus.UNKNOWN)
        }

    @property
    def paid(self) -> int:
        return sum(p.amount for p in self.payouts if p.status is PayoutStatus.PAID)


@dataclass(frozen=True)
class MarketStats:
    """Aggregates over confirmed trades; prices come from the current pool."""

    market_id: str
    status: MarketStatus
    trade_count: int
    volume: int  # sum of |cost| across buys and sells
    traders: int
    collected: int
    total_pool: int
    price_yes: float
    price_no: float
    unconfirmed: int = 0  # trades awaiting reconcile_trade
