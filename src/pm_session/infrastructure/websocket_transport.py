"""WebSocket transport to a single clearing node endpoint."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake, InvalidURI

from src.pm_common.errors import TransportError

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """
    Persistent duplex connection.

    Inbound frames are yielded in arrival order by ``messages()``; a clean
    close ends the iteration, anything else raises TransportError.
    """

    def __init__(
        self,
        url: str,
        ping_interval: float = 20.0,
        ping_timeout: float = 60.0,
        open_timeout: float = 10.0,
        max_size: int = 2**20,
    ) -> None:
        self._url = url
        self._connect_kwargs: dict[str, Any] = {
            "ping_interval": ping_interval,
            "ping_timeout": ping_timeout,
            "open_timeout": open_timeout,
            "max_size": max_size,
        }
        self._ws: Any = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        logger.info("Connecting to clearing node: %s", self._url[:60])
        try:
            self._ws = await websockets.connect(self._url, **self._connect_kwargs)
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as e:
            raise TransportError(f"cannot connect to {self._url}: {e}") from e
        logger.info("Connected to clearing node")

    async def send(self, message: str) -> None:
        if self._ws is None:
            raise TransportError("not connected")
        try:
            await self._ws.send(message)
        except ConnectionClosed as e:
            raise TransportError(f"connection closed while sending: {e}") from e

    async def messages(self) -> AsyncIterator[str | bytes]:
        if self._ws is None:
            raise TransportError("not connected")
        try:
            async for raw in self._ws:
                yield raw
        except ConnectionClosedOK:
            return
        except ConnectionClosed as e:
            raise TransportError(f"connection lost: {e}") from e

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except ConnectionClosed:
            pass
        logger.info("Clearing node connection closed")
