"""On-chain capability Protocol."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class OnChainGatewayProtocol(Protocol):
    async def approve_token(self, token: str, spender: str, amount: int) -> str: ...

    async def submit_transaction(self, to: str, data: bytes) -> str: ...

    async def await_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt: ...
