"""In-memory MarketRepositoryProtocol implementation.

Dataclasses are copied on the way in and out, so a caller mutating a Market it
read does not change stored state until it saves.
"""

import copy

from src.pm_market.domain.models import Market, Position, ResolutionReport, TradeRecord


class InMemoryMarketStore:
    def __init__(self) -> None:
        self._markets: dict[str, Market] = {}
        self._positions: dict[tuple[str, str], Position] = {}
        self._trades: dict[str, TradeRecord] = {}
        self._resolutions: dict[str, ResolutionReport] = {}

    async def add_market(self, market: Market) -> None:
        self._markets[market.id] = copy.deepcopy(market)

    async def get_market(self, market_id: str) -> Market | None:
        market = self._markets.get(market_id)
        return copy.deepcopy(market) if market is not None else None

    async def list_markets(self, status: str | None = None) -> list[Market]:
        return [
            copy.deepcopy(m)
            for m in sorted(self._markets.values(), key=lambda m: m.created_at)
            if status is None or m.status.value == status
        ]

    async def save_market(self, market: Market) -> None:
        self._markets[market.id] = copy.deepcopy(market)

    async def get_position(self, market_id: str, participant: str) -> Position | None:
        position = self._positions.get((market_id, participant.lower()))
        return copy.deepcopy(position) if position is not None else None

    async def list_positions(self, market_id: str) -> list[Position]:
        return [copy.deepcopy(p) for (mid, _), p in self._positions.items() if mid == market_id]

    async def save_position(self, position: Position) -> None:
        key = (position.market_id, position.participant.lower())
        self._positions[key] = copy.deepcopy(position)

    async def get_trade(self, idempotency_key: str) -> TradeRecord | None:
        record = self._trades.get(idempotency_key)
        return copy.deepcopy(record) if record is not None else None

    async def save_trade(self, record: TradeRecord) -> None:
        self._trades[record.request.idempotency_key] = copy.deepcopy(record)

    async def delete_trade(self, idempotency_key: str) -> None:
        self._trades.pop(idempotency_key, None)

    async def list_trades(
        self, market_id: str, participant: str | None = None
    ) -> list[TradeRecord]:
        """Trades of one market in first-seen order, optionally for one participant."""
        return [
            copy.deepcopy(r)
            for r in self._trades.values()
            if r.request.market_id == market_id
            and (participant is None or r.request.participant.lower() == participant.lower())
        ]

    async def get_resolution(self, market_id: str) -> ResolutionReport | None:
        report = self._resolutions.get(market_id)
        return copy.deepcopy(report) if report is not None else None

    async def save_resolution(self, report: ResolutionReport) -> None:
        self._resolutions[report.market_id] = copy.deepcopy(report)
