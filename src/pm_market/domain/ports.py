"""What the settlement orchestrator needs from a session client."""

from typing import Protocol

from src.pm_ledger.domain.models import TransferResult


class SettlementClientProtocol(Protocol):
    @property
    def address(self) -> str: ...

    async def transfer(
        self,
        destination: str,
        asset: str,
        amount: int,
        nonce: str,
        *,
        timeout: float | None = None,
    ) -> TransferResult: ...
