# src/pm_market/domain/repository.py
"""Repository Protocol — dependency inversion for testability.

Unit tests inject a fake that conforms to this Protocol.
Infrastructure layer provides the real implementation (in-memory here;
persistence of market metadata is left to the host application).
"""

from typing import Protocol

from src.pm_market.domain.models import Market, Position, ResolutionReport, TradeRecord


class MarketRepositoryProtocol(Protocol):
    async def add_market(self, market: Market) -> None: ...

    async def get_market(self, market_id: str) -> Market | None: ...

    async def list_markets(self, status: str | None = None) -> list[Market]: ...

    async def save_market(self, market: Market) -> None: ...

    async def get_position(self, market_id: str, participant: str) -> Position | None: ...

    async def list_positions(self, market_id: str) -> list[Position]: ...

    async def save_position(self, position: Position) -> None: ...

    async def get_trade(self, idempotency_key: str) -> TradeRecord | None: ...

    async def save_trade(self, record: TradeRecord) -> None: ...

    async def list_trades(
        self, market_id: str, participant: str | None = None
    ) -> list[TradeRecord]: ...

    async def delete_trade(self, idempotency_key: str) -> None: ...

    async def get_resolution(self, market_id: str) -> ResolutionReport | None: ...

    async def save_resolution(self, report: ResolutionReport) -> None: ...
