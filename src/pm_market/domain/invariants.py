"""Market settlement invariants. Checked, logged and reported; never enforced online."""

import logging

from src.pm_market.domain.models import Market, Payout, Position

logger = logging.getLogger(__name__)


def verify_payout_within_pool(market: Market, payouts: list[Payout]) -> list[str]:
    """INV-P: total payout <= total pool. Returns list of violation strings."""
    violations: list[str] = []
    total = sum(p.amount for p in payouts)
    if total > market.total_pool:
        msg = (
            f"INV-P violated: market={market.id} total_payout({total}) "
            f"> total_pool({market.total_pool}) = subsidy({market.subsidy}) "
            f"+ collected({market.collected})"
        )
        violations.append(msg)
        logger.error(msg)
    return violations


def verify_shares_match_pool(market: Market, positions: list[Position]) -> list[str]:
    """INV-S: outstanding pool quantities equal the sum of held positions."""
    violations: list[str] = []
    yes = sum(p.yes_shares for p in positions)
    no = sum(p.no_shares for p in positions)
    if (yes, no) != (market.q_yes, market.q_no):
        msg = (
            f"INV-S violated: market={market.id} positions(yes={yes}, no={no}) "
            f"!= pool(yes={market.q_yes}, no={market.q_no})"
        )
        violations.append(msg)
        logger.error(msg)
    return violations
