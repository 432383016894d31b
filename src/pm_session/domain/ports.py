"""Capability Protocols — dependency inversion for the session layer.

Unit tests inject fakes that conform to these Protocols.
Infrastructure provides the real implementations.
"""

from collections.abc import AsyncIterator, Iterable
from typing import Any, Protocol


class TransportProtocol(Protocol):
    """Persistent message-oriented duplex connection to one endpoint."""

    async def open(self) -> None: ...

    async def send(self, message: str) -> None: ...

    def messages(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


class WalletSignerProtocol(Protocol):
    """Long-lived identity. Never handed to the network, only asked to sign."""

    @property
    def address(self) -> str: ...

    def sign(self, message: bytes) -> str: ...

    def sign_typed(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        primary_type: str,
        value: dict[str, Any],
    ) -> str: ...


class RpcRequesterProtocol(Protocol):
    """What the ledger view and channel manager need from the session client."""

    @property
    def address(self) -> str: ...

    async def request(
        self,
        method: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
        expect: Iterable[str] | None = None,
    ) -> Any: ...
