"""Shared test fixtures."""

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.pm_ledger.domain.models import AssetRegistry
from src.pm_session.application.client import SessionClient
from tests.fakes import (
    FakeClearnode,
    FakeOnChain,
    FakeSessionKey,
    FakeWallet,
    make_channel_config,
    make_session_config,
)


@pytest.fixture
def clearnode() -> FakeClearnode:
    return FakeClearnode()


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def onchain() -> FakeOnChain:
    return FakeOnChain()


@pytest.fixture
def session_key() -> FakeSessionKey:
    return FakeSessionKey()


@pytest.fixture
def session_client(
    clearnode: FakeClearnode,
    wallet: FakeWallet,
    onchain: FakeOnChain,
    session_key: FakeSessionKey,
) -> SessionClient:
    """Disconnected client wired to the fake node."""
    return SessionClient(
        clearnode,
        wallet,
        onchain=onchain,
        config=make_session_config(),
        channel_config=make_channel_config(),
        assets=AssetRegistry(default_decimals=6),
        key_factory=lambda: session_key,
    )


@pytest.fixture
async def connected_client(session_client: SessionClient) -> AsyncIterator[SessionClient]:
    await session_client.connect()
    yield session_client
    await session_client.disconnect()


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
