# src/pm_market/application/service.py
from config.settings import settings
from src.pm_market.application.orchestrator import TradeSettlementOrchestrator
from src.pm_session.application.service import get_session_client

_orchestrator: TradeSettlementOrchestrator | None = None


def get_orchestrator() -> TradeSettlementOrchestrator:
    global _orchestrator  # noqa: PLW0603
    if _orchestrator is None:
        _orchestrator = TradeSettlementOrchestrator(
            get_session_client(), transfer_timeout=settings.TRANSFER_TIMEOUT_SECONDS
        )
    return _orchestrator
