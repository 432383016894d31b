"""pm_market REST endpoints.

POST /markets                              — create (optionally fund) a market
GET  /markets                              — list, optional status filter
GET  /markets/{market_id}                  — detail with current prices
POST /markets/{market_id}/trades           — buy or sell shares (idempotent per nonce)
GET  /markets/{market_id}/trades           — confirmed trades, optional participant filter
GET  /markets/{market_id}/stats            — volume, trade count, traders, prices
POST /markets/{market_id}/close            — stop trading
POST /markets/{market_id}/resolve          — resolve and compute payouts
POST /markets/{market_id}/reconcile        — settle an UNKNOWN trade after a ledger check
GET  /markets/{market_id}/resolution       — payout report with per-payout status
POST /markets/{market_id}/payouts/retry    — re-send FAILED payouts
POST /markets/{market_id}/payouts/reconcile — settle an UNKNOWN payout after a ledger check
GET  /markets/{market_id}/positions/{participant}
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from src.pm_common.enums import MarketStatus
from src.pm_common.response import ApiResponse, success_response
from src.pm_market.application.orchestrator import CreateMarketParams, TradeSettlementOrchestrator
from src.pm_market.application.schemas import (
    CreateMarketRequest,
    MarketOut,
    MarketStatsOut,
    PositionOut,
    ReconcilePayoutRequest,
    ReconcileTradeRequest,
    ResolutionOut,
    ResolveMarketRequest,
    TradeReceiptOut,
    TradeRequestBody,
)
from src.pm_market.application.service import get_orchestrator

router = APIRouter(prefix="/markets", tags=["markets"])

Orchestrator = Annotated[TradeSettlementOrchestrator, Depends(get_orchestrator)]


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("", status_code=201)
async def create_market(
    body: CreateMarketRequest, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    market = await orchestrator.create_market(CreateMarketParams(**body.model_dump()))
    return _respond(request, MarketOut.from_domain(market).model_dump(mode="json"))


@router.get("")
async def list_markets(
    request: Request,
    orchestrator: Orchestrator,
    status: MarketStatus | None = Query(None),
) -> ApiResponse:
    markets = await orchestrator.list_markets(status)
    return _respond(request, [MarketOut.from_domain(m).model_dump(mode="json") for m in markets])


@router.get("/{market_id}")
async def get_market(market_id: str, request: Request, orchestrator: Orchestrator) -> ApiResponse:
    market = await orchestrator.get_market(market_id)
    return _respond(request, MarketOut.from_domain(market).model_dump(mode="json"))


@router.post("/{market_id}/trades")
async def trade(
    market_id: str, body: TradeRequestBody, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    if body.side == "SELL":
        receipt = await orchestrator.sell(
            market_id, body.outcome, body.shares, body.nonce, participant=body.participant
        )
    else:
        receipt = await orchestrator.trade(
            market_id,
            body.outcome,
            body.shares,
            body.nonce,
            participant=body.participant,
            max_cost=body.max_cost,
        )
    return _respond(request, TradeReceiptOut.from_domain(receipt).model_dump(mode="json"))


@router.post("/{market_id}/close")
async def close_market(market_id: str, request: Request, orchestrator: Orchestrator) -> ApiResponse:
    market = await orchestrator.close_market(market_id)
    return _respond(request, MarketOut.from_domain(market).model_dump(mode="json"))


@router.post("/{market_id}/resolve")
async def resolve_market(
    market_id: str, body: ResolveMarketRequest, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    report = await orchestrator.resolve_market(market_id, body.outcome)
    return _respond(request, ResolutionOut.from_domain(report).model_dump(mode="json"))


@router.post("/{market_id}/reconcile")
async def reconcile_trade(
    market_id: str, body: ReconcileTradeRequest, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    record = await orchestrator.reconcile_trade(
        market_id, body.participant, body.nonce, body.applied, body.transfer_id
    )
    return _respond(
        request,
        {
            "status": record.status.value,
            "receipt": (
                TradeReceiptOut.from_domain(record.receipt).model_dump(mode="json")
                if record.receipt
                else None
            ),
        },
    )


@router.get("/{market_id}/positions/{participant}")
async def get_position(
    market_id: str, participant: str, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    position = await orchestrator.get_position(market_id, participant)
    return _respond(request, PositionOut.from_domain(position).model_dump(mode="json"))


@router.get("/{market_id}/trades")
async def list_trades(
    market_id: str,
    request: Request,
    orchestrator: Orchestrator,
    participant: str | None = Query(None),
) -> ApiResponse:
    receipts = await orchestrator.list_trades(market_id, participant)
    return _respond(
        request, [TradeReceiptOut.from_domain(r).model_dump(mode="json") for r in receipts]
    )


@router.get("/{market_id}/stats")
async def market_stats(market_id: str, request: Request, orchestrator: Orchestrator) -> ApiResponse:
    stats = await orchestrator.market_stats(market_id)
    return _respond(request, MarketStatsOut.from_domain(stats).model_dump(mode="json"))


@router.get("/{market_id}/resolution")
async def get_resolution(
    market_id: str, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    report = await orchestrator.get_resolution(market_id)
    return _respond(request, ResolutionOut.from_domain(report).model_dump(mode="json"))


@router.post("/{market_id}/payouts/retry")
async def retry_payouts(
    market_id: str, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    report = await orchestrator.retry_payouts(market_id)
    return _respond(request, ResolutionOut.from_domain(report).model_dump(mode="json"))


@router.post("/{market_id}/payouts/reconcile")
async def reconcile_payout(
    market_id: str, body: ReconcilePayoutRequest, request: Request, orchestrator: Orchestrator
) -> ApiResponse:
    report = await orchestrator.reconcile_payout(
        market_id, body.participant, body.applied, body.transfer_id
    )
    return _respond(request, ResolutionOut.from_domain(report).model_dump(mode="json"))
