"""TradeSettlementOrchestrator — AMM pricing + ledger settlement per market.

Per trade request: priced -> transferring -> confirmed | failed | unknown
  1. quote against the current pool (under the market lock)
  2. transfer the cost to the market's ledger address (nonce derived from the
     idempotency key market_id:participant:nonce)
  3. on confirmation, commit pool + position + receipt together
  4. on failure leave pool and position untouched; on timeout record UNKNOWN and
     surface SettlementFailedError, the caller reconciles via reconcile_trade()

Payouts follow the same split: pending -> paid | failed | unknown. Failed
payouts are re-sent by retry_payouts() under a fresh nonce; unknown ones are
settled by reconcile_payout() once the ledger has been checked.

Single writer per market; different markets proceed independently.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable
from dataclasses import dataclass

from src.pm_amm.domain import lmsr
from src.pm_amm.domain.lmsr import Quote
from src.pm_common.datetime_utils import utc_now
from src.pm_common.enums import MarketStatus, Outcome, PayoutStatus, TradeStatus
from src.pm_common.errors import (
    AppError,
    ConfigurationError,
    InvalidStateError,
    InvalidTradeError,
    MarketExistsError,
    MarketNotFoundError,
    MarketNotOpenError,
    NonceConsumedError,
    RequestTimeoutError,
    SettlementFailedError,
    SlippageExceededError,
    TransportError,
)
from src.pm_common.id_generator import generate_market_id, generate_trade_id
from src.pm_ledger.domain.models import TransferResult
from src.pm_market.domain.invariants import verify_payout_within_pool, verify_shares_match_pool
from src.pm_market.domain.models import (
    Market,
    MarketStats,
    Payout,
    Position,
    ResolutionReport,
    TradeReceipt,
    TradeRecord,
    TradeRequest,
)
from src.pm_market.domain.ports import SettlementClientProtocol
from src.pm_market.domain.repository import MarketRepositoryProtocol
from src.pm_market.infrastructure.memory_store import InMemoryMarketStore

logger = logging.getLogger(__name__)

# Raised before anything reached the transport: the request can be dropped.
_NOT_SENT = (InvalidStateError, InvalidTradeError, ConfigurationError)
# Outcome unknown: the transfer may have been applied server-side.
_UNCONFIRMED = (SettlementFailedError, RequestTimeoutError, TransportError)


@dataclass(frozen=True)
class CreateMarketParams:
    title: str
    ledger_address: str
    asset: str
    liquidity_parameter: int | None = None  # derived from subsidy when omitted
    subsidy: int = 0
    fund: bool = False  # transfer the subsidy from the session wallet first
    market_id: str | None = None


class TradeSettlementOrchestrator:
    def __init__(
        self,
        client: SettlementClientProtocol,
        store: MarketRepositoryProtocol | None = None,
        treasury: SettlementClientProtocol | None = None,
        transfer_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._store: MarketRepositoryProtocol = store or InMemoryMarketStore()
        self._treasury = treasury
        self._transfer_timeout = transfer_timeout
        self._market_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _lock(self, market_id: str) -> asyncio.Lock:
        return self._market_locks[market_id]

    # ------------------------------------------------------------------
    # Market lifecycle
    # ------------------------------------------------------------------

    async def create_market(self, params: CreateMarketParams) -> Market:
        market_id = params.market_id or generate_market_id()
        b = params.liquidity_parameter
        if b is None:
            if params.subsidy <= 0:
                raise InvalidTradeError("either liquidity_parameter or subsidy is required")
            b = lmsr.liquidity_parameter_for_subsidy(params.subsidy)
        if b <= 0:
            raise InvalidTradeError(f"liquidity parameter must be positive, got {b}")

        async with self._lock(market_id):
            if await self._store.get_market(market_id) is not None:
                raise MarketExistsError(market_id)
            if params.fund and params.subsidy > 0:
                await self._client.transfer(
                    params.ledger_address,
                    params.asset,
                    params.subsidy,
                    f"fund:{market_id}",
                    timeout=self._transfer_timeout,
                )
            market = Market(
                id=market_id,
                title=params.title,
                ledger_address=params.ledger_address,
                asset=params.asset,
                liquidity_parameter=b,
                subsidy=params.subsidy,
            )
            await self._store.add_market(market)

        if params.subsidy < lmsr.max_loss(b):
            logger.warning(
                "Market %s subsidy %d below worst-case loss %d (b=%d)",
                market_id, params.subsidy, lmsr.max_loss(b), b,
            )
        logger.info("Market %s created: %r b=%d subsidy=%d", market_id, params.title, b,
                    params.subsidy)
        return market

    async def close_market(self, market_id: str) -> Market:
        async with self._lock(market_id):
            market = await self._require_market(market_id)
            market.close()
            await self._store.save_market(market)
        logger.info("Market %s closed", market_id)
        return market

    async def resolve_market(self, market_id: str, outcome: Outcome) -> ResolutionReport:
        """Resolve and pay each holder their winning shares.

        An open market is closed first. Payout transfers go out only when a
        treasury session for the market account is configured.
        """
        async with self._lock(market_id):
            market = await self._require_market(market_id)
            if market.status is MarketStatus.OPEN:
                market.close()
            market.resolve(outcome)
            positions = await self._store.list_positions(market_id)
            payouts = [
                Payout(p.participant, p.shares(outcome))
                for p in positions
                if p.shares(outcome) > 0
            ]
            violations = verify_payout_within_pool(market, payouts)
            violations += verify_shares_match_pool(market, positions)
            await self._store.save_market(market)

            report = ResolutionReport(
                market_id=market_id,
                outcome=outcome,
                payouts=payouts,
                total_payout=sum(p.amount for p in payouts),
                total_pool=market.total_pool,
                violations=violations,
            )
            await self._store.save_resolution(report)
            if self._treasury is not None and payouts:
                await self._pay_out(market, report)

        logger.info(
            "Market %s resolved %s: %d payouts, total=%d, pool=%d, failed=%d",
            market_id, outcome.value, len(payouts), report.total_payout,
            report.total_pool, len(report.failed),
        )
        return report

    async def retry_payouts(self, market_id: str) -> ResolutionReport:
        """Send every PENDING or FAILED payout again.

        UNKNOWN payouts are skipped: they may already be on the ledger and
        must go through reconcile_payout() first.
        """
        async with self._lock(market_id):
            market = await self._require_market(market_id)
            report = await self._require_resolution(market)
            await self._pay_out(market, report)
        logger.info("Market %s payout retry: paid=%d failed=%d",
                    market_id, report.paid, len(report.failed))
        return report

    async def reconcile_payout(
        self,
        market_id: str,
        participant: str,
        applied: bool,
        transfer_id: str | None = None,
    ) -> ResolutionReport:
        """Settle an UNKNOWN payout after the caller has checked the ledger.

        applied=True marks it paid; applied=False marks it failed so
        retry_payouts() sends it again under a fresh nonce.
        """
        async with self._lock(market_id):
            market = await self._require_market(market_id)
            report = await self._require_resolution(market)
            payout = next(
                (p for p in report.payouts if p.participant.lower() == participant.lower()), None
            )
            if payout is None:
                raise InvalidTradeError(f"no payout recorded for {participant} in {market_id}")
            if payout.status is not PayoutStatus.UNKNOWN:
                raise InvalidStateError("reconcile_payout", payout.status.value,
                                        (PayoutStatus.UNKNOWN.value,))
            if applied:
                payout.status = PayoutStatus.PAID
                payout.transfer_id = transfer_id or payout.nonce(market.id, payout.attempts)
                payout.error = None
            else:
                payout.status = PayoutStatus.FAILED
                payout.error = "not applied (reconciled)"
            await self._save_payouts(market, report)
        logger.info("Payout to %s in %s reconciled as %s", participant, market_id,
                    "applied" if applied else "not applied")
        return report

    async def _pay_out(self, market: Market, report: ResolutionReport) -> None:
        treasury = self._require_treasury(market)
        for payout in report.payouts:
            if payout.status not in (PayoutStatus.PENDING, PayoutStatus.FAILED):
                continue
            attempt = payout.attempts + 1
            try:
                result = await treasury.transfer(
                    payout.participant,
                    market.asset,
                    payout.amount,
                    payout.nonce(market.id, attempt),
                    timeout=self._transfer_timeout,
                )
            except _NOT_SENT as e:
                payout.status = PayoutStatus.FAILED
                payout.error = e.message
                logger.error("Payout to %s not sent: %s", payout.participant, e.message)
                continue
            except _UNCONFIRMED as e:
                payout.attempts = attempt
                payout.status = PayoutStatus.UNKNOWN
                payout.error = e.message
                logger.warning("Payout to %s unconfirmed, reconcile before retrying: %s",
                               payout.participant, e.message)
                continue
            except AppError as e:
                payout.attempts = attempt
                payout.status = PayoutStatus.FAILED
                payout.error = e.message
                logger.error("Payout to %s failed: %s", payout.participant, e.message)
                continue
            payout.attempts = attempt
            payout.status = PayoutStatus.PAID
            payout.transfer_id = result.transfer_id
            payout.error = None
        await self._save_payouts(market, report)

    async def _save_payouts(self, market: Market, report: ResolutionReport) -> None:
        market.paid_out = report.paid
        await self._store.save_market(market)
        await self._store.save_resolution(report)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def trade(
        self,
        market_id: str,
        outcome: Outcome,
        shares: int,
        nonce: str,
        *,
        participant: str | None = None,
        max_cost: int | None = None,
    ) -> TradeReceipt:
        """Buy ``shares`` (raw) of ``outcome``. Idempotent per (market, participant, nonce)."""
        if shares <= 0:
            raise InvalidTradeError("shares must be positive; use sell() to reduce a position")
        request = TradeRequest(
            market_id=market_id,
            participant=participant or self._client.address,
            outcome=outcome,
            shares=shares,
            nonce=nonce,
            max_cost=max_cost,
        )
        async with self._lock(market_id):
            existing = await self._store.get_trade(request.idempotency_key)
            if existing is not None:
                return self._replay(existing)
            market = await self._require_open_market(market_id)
            quote = lmsr.quote(market.liquidity_parameter, market.pool, outcome, shares)
            if max_cost is not None and quote.cost > max_cost:
                raise SlippageExceededError(quote.cost, max_cost)
            result = await self._settle(
                request,
                quote,
                self._client.transfer(
                    market.ledger_address,
                    market.asset,
                    quote.cost,
                    request.transfer_nonce,
                    timeout=self._transfer_timeout,
                ),
            )
            return await self._commit(market, request, quote, result)

    async def sell(
        self,
        market_id: str,
        outcome: Outcome,
        shares: int,
        nonce: str,
        *,
        participant: str | None = None,
    ) -> TradeReceipt:
        """Compensating trade: return ``shares`` to the pool, paid from the market account."""
        if shares <= 0:
            raise InvalidTradeError("shares to sell must be positive")
        request = TradeRequest(
            market_id=market_id,
            participant=participant or self._client.address,
            outcome=outcome,
            shares=-shares,
            nonce=nonce,
        )
        async with self._lock(market_id):
            existing = await self._store.get_trade(request.idempotency_key)
            if existing is not None:
                return self._replay(existing)
            market = await self._require_open_market(market_id)
            treasury = self._require_treasury(market)
            position = await self._store.get_position(market_id, request.participant)
            held = position.shares(outcome) if position else 0
            if held < shares:
                raise InvalidTradeError(f"position holds {held} {outcome.value} shares, "
                                        f"cannot sell {shares}")
            quote = lmsr.quote(market.liquidity_parameter, market.pool, outcome, -shares)
            proceeds = -quote.cost
            if proceeds <= 0:
                raise InvalidTradeError("sell proceeds round to zero")
            result = await self._settle(
                request,
                quote,
                treasury.transfer(
                    request.participant,
                    market.asset,
                    proceeds,
                    request.transfer_nonce,
                    timeout=self._transfer_timeout,
                ),
            )
            return await self._commit(market, request, quote, result)

    async def _settle(
        self, request: TradeRequest, quote: Quote, transfer: Awaitable[TransferResult]
    ) -> TransferResult:
        record = TradeRecord(request=request, status=TradeStatus.TRANSFERRING, quote=quote)
        await self._store.save_trade(record)
        try:
            return await transfer
        except _NOT_SENT:
            await self._store.delete_trade(request.idempotency_key)
            raise
        except _UNCONFIRMED as e:
            record.status = TradeStatus.UNKNOWN
            record.error = e.message
            await self._store.save_trade(record)
            logger.warning(
                "Trade %s unconfirmed, reconcile before retrying: %s",
                request.idempotency_key, e.message,
            )
            raise SettlementFailedError(
                "trade", request.nonce, e.message, TradeStatus.UNKNOWN.value
            ) from e
        except AppError as e:
            record.status = TradeStatus.FAILED
            record.error = e.message
            await self._store.save_trade(record)
            logger.warning("Trade %s failed: %s", request.idempotency_key, e.message)
            raise

    async def _commit(
        self,
        market: Market,
        request: TradeRequest,
        quote: Quote,
        result: TransferResult,
    ) -> TradeReceipt:
        # Delta, not quote.pool_after: a reconciled trade lands on the current pool.
        market.apply_pool(market.pool.apply(request.outcome, request.shares))
        market.collected += quote.cost
        position = await self._store.get_position(market.id, request.participant) or Position(
            market_id=market.id, participant=request.participant
        )
        position.apply(request.outcome, request.shares, quote.cost)
        receipt = TradeReceipt(
            trade_id=generate_trade_id(),
            market_id=market.id,
            participant=request.participant,
            outcome=request.outcome,
            cost=quote.cost,
            shares_delta=request.shares,
            transfer_id=result.transfer_id,
            nonce=request.nonce,
            confirmed_at=utc_now(),
            price_after=lmsr.price(market.liquidity_parameter, market.pool, request.outcome),
        )
        record = TradeRecord(
            request=request, status=TradeStatus.CONFIRMED, quote=quote, receipt=receipt
        )
        await self._store.save_market(market)
        await self._store.save_position(position)
        await self._store.save_trade(record)
        logger.info(
            "Trade confirmed: market=%s participant=%s %s %+d cost=%d transfer=%s",
            market.id, request.participant, request.outcome.value, request.shares,
            quote.cost, result.transfer_id,
        )
        return receipt

    def _replay(self, record: TradeRecord) -> TradeReceipt:
        if record.status is TradeStatus.CONFIRMED and record.receipt is not None:
            logger.info("Trade idempotency hit: key=%s", record.request.idempotency_key)
            return record.receipt
        raise NonceConsumedError(record.request.nonce, record.status.value)

    async def reconcile_trade(
        self,
        market_id: str,
        participant: str,
        nonce: str,
        applied: bool,
        transfer_id: str | None = None,
    ) -> TradeRecord:
        """Settle an UNKNOWN trade after the caller has checked the ledger.

        applied=True commits the stored quote (the trader paid it); applied=False
        marks the trade failed. Either way the nonce stays consumed.
        """
        key = f"{market_id}:{participant}:{nonce}"
        async with self._lock(market_id):
            record = await self._store.get_trade(key)
            if record is None:
                raise InvalidTradeError(f"no trade recorded for {key}")
            if record.status is not TradeStatus.UNKNOWN or record.quote is None:
                raise InvalidStateError("reconcile_trade", record.status.value,
                                        (TradeStatus.UNKNOWN.value,))
            if not applied:
                record.status = TradeStatus.FAILED
                record.error = "not applied (reconciled)"
                await self._store.save_trade(record)
                logger.info("Trade %s reconciled as not applied", key)
                return record
            market = await self._require_market(market_id)
            result = TransferResult(
                transfer_id=transfer_id or record.request.transfer_nonce,
                destination=market.ledger_address,
                asset=market.asset,
                amount=abs(record.quote.cost),
                nonce=record.request.transfer_nonce,
                confirmed_at=utc_now(),
            )
            await self._commit(market, record.request, record.quote, result)
            logger.info("Trade %s reconciled as applied", key)
            return await self._store.get_trade(key)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_market(self, market_id: str) -> Market:
        return await self._require_market(market_id)

    async def list_markets(self, status: MarketStatus | None = None) -> list[Market]:
        return await self._store.list_markets(status.value if status else None)

    async def get_position(self, market_id: str, participant: str) -> Position:
        await self._require_market(market_id)
        return await self._store.get_position(market_id, participant) or Position(
            market_id=market_id, participant=participant
        )

    async def get_trade(self, market_id: str, participant: str, nonce: str) -> TradeRecord | None:
        return await self._store.get_trade(f"{market_id}:{participant}:{nonce}")

    async def get_receipt(self, market_id: str, participant: str, nonce: str) -> TradeReceipt | None:
        record = await self.get_trade(market_id, participant, nonce)
        return record.receipt if record is not None else None

    async def list_trades(
        self, market_id: str, participant: str | None = None
    ) -> list[TradeReceipt]:
        """Confirmed trades of a market, oldest first."""
        await self._require_market(market_id)
        records = await self._store.list_trades(market_id, participant)
        receipts = [
            r.receipt for r in records
            if r.status is TradeStatus.CONFIRMED and r.receipt is not None
        ]
        return sorted(receipts, key=lambda r: r.confirmed_at)

    async def market_stats(self, market_id: str) -> MarketStats:
        market = await self._require_market(market_id)
        records = await self._store.list_trades(market_id)
        receipts = [
            r.receipt for r in records
            if r.status is TradeStatus.CONFIRMED and r.receipt is not None
        ]
        odds = lmsr.prices(market.liquidity_parameter, market.pool)
        return MarketStats(
            market_id=market.id,
            status=market.status,
            trade_count=len(receipts),
            volume=sum(abs(r.cost) for r in receipts),
            traders=len({r.participant.lower() for r in receipts}),
            collected=market.collected,
            total_pool=market.total_pool,
            price_yes=odds[Outcome.YES],
            price_no=odds[Outcome.NO],
            unconfirmed=sum(1 for r in records if r.status is TradeStatus.UNKNOWN),
        )

    async def get_resolution(self, market_id: str) -> ResolutionReport:
        market = await self._require_market(market_id)
        return await self._require_resolution(market)

    async def market_odds(self, market_id: str) -> dict[Outcome, float]:
        market = await self._require_market(market_id)
        return lmsr.prices(market.liquidity_parameter, market.pool)

    async def quote(self, market_id: str, outcome: Outcome, shares: int) -> Quote:
        market = await self._require_market(market_id)
        return lmsr.quote(market.liquidity_parameter, market.pool, outcome, shares)

    async def _require_market(self, market_id: str) -> Market:
        market = await self._store.get_market(market_id)
        if market is None:
            raise MarketNotFoundError(market_id)
        return market

    async def _require_open_market(self, market_id: str) -> Market:
        market = await self._require_market(market_id)
        if market.status is not MarketStatus.OPEN:
            raise MarketNotOpenError(market_id, market.status.value)
        return market

    async def _require_resolution(self, market: Market) -> ResolutionReport:
        report = await self._store.get_resolution(market.id)
        if market.status is not MarketStatus.RESOLVED or report is None:
            raise InvalidStateError("payouts", market.status.value, (MarketStatus.RESOLVED.value,))
        return report

    def _require_treasury(self, market: Market) -> SettlementClientProtocol:
        if self._treasury is None:
            raise InvalidStateError("market_account_transfer", "no_treasury")
        if self._treasury.address.lower() != market.ledger_address.lower():
            raise ConfigurationError(
                f"treasury {self._treasury.address} is not market account {market.ledger_address}"
            )
        return self._treasury
