"""Integration-test fixtures.

The HTTP app runs against a connected SessionClient talking to the scripted
FakeClearnode, with the app's singleton getters overridden per test.
"""

from collections.abc import AsyncIterator

import pytest_asyncio
from httpx import AsyncClient

from src.main import app
from src.pm_market.application.orchestrator import TradeSettlementOrchestrator
from src.pm_market.application.service import get_orchestrator
from src.pm_session.application.client import SessionClient
from src.pm_session.application.service import get_session_client
from tests.fakes import MARKET_ADDRESS, FakeLedger


@pytest_asyncio.fixture
async def treasury() -> FakeLedger:
    return FakeLedger(MARKET_ADDRESS)


@pytest_asyncio.fixture
async def orchestrator(
    connected_client: SessionClient, treasury: FakeLedger
) -> TradeSettlementOrchestrator:
    return TradeSettlementOrchestrator(connected_client, treasury=treasury, transfer_timeout=0.3)


@pytest_asyncio.fixture
async def api(
    client: AsyncClient,
    connected_client: SessionClient,
    orchestrator: TradeSettlementOrchestrator,
) -> AsyncIterator[AsyncClient]:
    """HTTP client whose routes use the connected test session."""
    app.dependency_overrides[get_session_client] = lambda: connected_client
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield client
    app.dependency_overrides.clear()
