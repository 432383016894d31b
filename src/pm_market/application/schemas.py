"""Pydantic schemas for pm_market API requests and responses.

Amounts stay raw integers on the wire; ``*_display`` fields are for humans only.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from config.settings import settings
from src.pm_amm.domain import lmsr
from src.pm_common.enums import MarketStatus, Outcome, PayoutStatus
from src.pm_common.units import raw_to_display
from src.pm_market.domain.models import (
    Market,
    MarketStats,
    Position,
    ResolutionReport,
    TradeReceipt,
)


def _display(raw: int) -> str:
    return raw_to_display(raw, settings.ASSET_DECIMALS)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateMarketRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    ledger_address: str = Field(..., min_length=1)
    asset: str = settings.ASSET_SYMBOL
    liquidity_parameter: int | None = Field(None, gt=0)
    subsidy: int = Field(0, ge=0)
    fund: bool = False
    market_id: str | None = None


class TradeRequestBody(BaseModel):
    outcome: Outcome
    shares: int = Field(..., gt=0, description="Raw share units")
    nonce: str = Field(..., min_length=1, max_length=128)
    side: str = Field("BUY", pattern="^(BUY|SELL)$")
    max_cost: int | None = Field(None, gt=0)
    participant: str | None = None


class ResolveMarketRequest(BaseModel):
    outcome: Outcome


class ReconcileTradeRequest(BaseModel):
    participant: str
    nonce: str
    applied: bool
    transfer_id: str | None = None


class ReconcilePayoutRequest(BaseModel):
    participant: str
    applied: bool
    transfer_id: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class MarketOut(BaseModel):
    id: str
    title: str
    status: MarketStatus
    outcome: Outcome | None
    ledger_address: str
    asset: str
    liquidity_parameter: int
    q_yes: int
    q_no: int
    price_yes: float
    price_no: float
    subsidy: int
    collected: int
    total_pool: int
    total_pool_display: str
    max_loss: int
    created_at: datetime
    resolved_at: datetime | None

    @classmethod
    def from_domain(cls, m: Market) -> "MarketOut":
        odds = lmsr.prices(m.liquidity_parameter, m.pool)
        return cls(
            id=m.id,
            title=m.title,
            status=m.status,
            outcome=m.outcome,
            ledger_address=m.ledger_address,
            asset=m.asset,
            liquidity_parameter=m.liquidity_parameter,
            q_yes=m.q_yes,
            q_no=m.q_no,
            price_yes=odds[Outcome.YES],
            price_no=odds[Outcome.NO],
            subsidy=m.subsidy,
            collected=m.collected,
            total_pool=m.total_pool,
            total_pool_display=_display(m.total_pool),
            max_loss=lmsr.max_loss(m.liquidity_parameter),
            created_at=m.created_at,
            resolved_at=m.resolved_at,
        )


class PositionOut(BaseModel):
    market_id: str
    participant: str
    yes_shares: int
    no_shares: int
    cost_basis: int
    cost_basis_display: str

    @classmethod
    def from_domain(cls, p: Position) -> "PositionOut":
        return cls(
            market_id=p.market_id,
            participant=p.participant,
            yes_shares=p.yes_shares,
            no_shares=p.no_shares,
            cost_basis=p.cost_basis,
            cost_basis_display=_display(p.cost_basis),
        )


class TradeReceiptOut(BaseModel):
    trade_id: str
    market_id: str
    participant: str
    outcome: Outcome
    cost: int
    cost_display: str
    shares_delta: int
    transfer_id: str
    nonce: str
    confirmed_at: datetime
    price_after: float

    @classmethod
    def from_domain(cls, r: TradeReceipt) -> "TradeReceiptOut":
        return cls(
            trade_id=r.trade_id,
            market_id=r.market_id,
            participant=r.participant,
            outcome=r.outcome,
            cost=r.cost,
            cost_display=_display(r.cost),
            shares_delta=r.shares_delta,
            transfer_id=r.transfer_id,
            nonce=r.nonce,
            confirmed_at=r.confirmed_at,
            price_after=r.price_after,
        )


class PayoutOut(BaseModel):
    participant: str
    amount: int
    transfer_id: str | None
    status: PayoutStatus
    attempts: int
    error: str | None


class ResolutionOut(BaseModel):
    market_id: str
    outcome: Outcome
    payouts: list[PayoutOut]
    total_payout: int
    total_pool: int
    paid: int
    violations: list[str]
    failed: dict[str, str]

    @classmethod
    def from_domain(cls, r: ResolutionReport) -> "ResolutionOut":
        return cls(
            market_id=r.market_id,
            outcome=r.outcome,
            payouts=[
                PayoutOut(
                    participant=p.participant,
                    amount=p.amount,
                    transfer_id=p.transfer_id,
                    status=p.status,
                    attempts=p.attempts,
                    error=p.error,
                )
                for p in r.payouts
            ],
            total_payout=r.total_payout,
            total_pool=r.total_pool,
            paid=r.paid,
            violations=r.violations,
            failed=r.failed,
        )


class MarketStatsOut(BaseModel):
    market_id: str
    status: MarketStatus
    trade_count: int
    volume: int
    volume_display: str
    traders: int
    collected: int
    total_pool: int
    price_yes: float
    price_no: float
    unconfirmed: int

    @classmethod
    def from_domain(cls, s: MarketStats) -> "MarketStatsOut":
        return cls(
            market_id=s.market_id,
            status=s.status,
            trade_count=s.trade_count,
            volume=s.volume,
            volume_display=_display(s.volume),
            traders=s.traders,
            collected=s.collected,
            total_pool=s.total_pool,
            price_yes=s.price_yes,
            price_no=s.price_no,
            unconfirmed=s.unconfirmed,
        )
