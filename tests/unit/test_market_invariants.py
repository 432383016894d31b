"""Unit tests for market settlement invariant checks."""

from src.pm_market.domain.invariants import verify_payout_within_pool, verify_shares_match_pool
from src.pm_market.domain.models import Market, Payout, Position

UNIT = 1_000_000


def _market(**kwargs) -> Market:
    defaults = dict(
        id="MKT-INV",
        title="Invariant Market",
        ledger_address="0x" + "33" * 20,
        asset="ytest.usd",
        liquidity_parameter=100 * UNIT,
        subsidy=70 * UNIT,
        collected=10 * UNIT,
    )
    defaults.update(kwargs)
    return Market(**defaults)


class TestPayoutWithinPool:
    def test_payout_equal_to_pool_passes(self) -> None:
        payouts = [Payout("0xa", 50 * UNIT), Payout("0xb", 30 * UNIT)]
        assert verify_payout_within_pool(_market(), payouts) == []

    def test_payout_above_pool_is_reported(self) -> None:
        violations = verify_payout_within_pool(_market(), [Payout("0xa", 80 * UNIT + 1)])
        assert len(violations) == 1
        assert "INV-P" in violations[0]
        assert "MKT-INV" in violations[0]

    def test_no_payouts(self) -> None:
        assert verify_payout_within_pool(_market(subsidy=0, collected=0), []) == []


class TestSharesMatchPool:
    def test_matching_positions_pass(self) -> None:
        market = _market(q_yes=7, q_no=3)
        positions = [
            Position("MKT-INV", "0xa", yes_shares=5, no_shares=3),
            Position("MKT-INV", "0xb", yes_shares=2),
        ]
        assert verify_shares_match_pool(market, positions) == []

    def test_mismatch_is_reported(self) -> None:
        market = _market(q_yes=7, q_no=3)
        violations = verify_shares_match_pool(market, [Position("MKT-INV", "0xa", yes_shares=7)])
        assert len(violations) == 1
        assert "INV-S" in violations[0]
