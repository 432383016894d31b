"""LMSR (Logarithmic Market Scoring Rule) pricing for binary markets.

All quantities are raw integer units at the asset's ledger precision:
liquidity parameter ``b``, outstanding shares ``q_yes`` / ``q_no`` and costs.
(One share pays one whole asset unit at resolution, so 1 share == 10**decimals raw.)

    C(q)     = b * ln(exp(q_yes/b) + exp(q_no/b))
    price_X  = exp(q_X/b) / (exp(q_yes/b) + exp(q_no/b))
    cost(Δ)  = C(q + Δ·e_X) - C(q)

Evaluated with Decimal at 60 significant digits (log-sum-exp form, so large
q/b never overflows). Rounding always favours the pool: buys round the cost up
(minimum 1 raw unit), sells round the proceeds down.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, Context, Decimal, localcontext

from src.pm_common.enums import Outcome
from src.pm_common.errors import InvalidTradeError

_PRECISION = 60
_LN2 = Context(prec=_PRECISION).ln(Decimal(2))


@dataclass(frozen=True)
class Pool:
    q_yes: int = 0
    q_no: int = 0

    def shares(self, outcome: Outcome) -> int:
        return self.q_yes if outcome is Outcome.YES else self.q_no

    def apply(self, outcome: Outcome, delta: int) -> "Pool":
        if outcome is Outcome.YES:
            return Pool(self.q_yes + delta, self.q_no)
        return Pool(self.q_yes, self.q_no + delta)


@dataclass(frozen=True)
class Quote:
    outcome: Outcome
    shares: int  # signed Δ; negative for a sell
    cost: int  # raw units; negative means the trader receives -cost
    pool_before: Pool
    pool_after: Pool
    price_before: float
    price_after: float

    @property
    def slippage(self) -> float:
        return abs(self.price_after - self.price_before)

    @property
    def average_price(self) -> float:
        return abs(self.cost) / abs(self.shares)


def _check_b(b: int) -> None:
    if b <= 0:
        raise ValueError(f"liquidity parameter must be positive, got {b}")


def _cost_exact(b: int, q_yes: int, q_no: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        bd = Decimal(b)
        m = max(q_yes, q_no)
        s = ((Decimal(q_yes - m)) / bd).exp() + ((Decimal(q_no - m)) / bd).exp()
        return Decimal(m) + bd * s.ln()


def cost(b: int, q_yes: int, q_no: int) -> Decimal:
    """C(q) as an exact-enough Decimal in raw units (not rounded)."""
    _check_b(b)
    return _cost_exact(b, q_yes, q_no)


def _price_yes(b: int, q_yes: int, q_no: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        # 1 / (1 + exp(d)), evaluated so the exponent is never positive
        d = Decimal(q_no - q_yes) / Decimal(b)
        if d > 0:
            e = (-d).exp()
            return e / (1 + e)
        return Decimal(1) / (1 + d.exp())


def price(b: int, pool: Pool, outcome: Outcome) -> float:
    _check_b(b)
    p_yes = _price_yes(b, pool.q_yes, pool.q_no)
    return float(p_yes if outcome is Outcome.YES else 1 - p_yes)


def prices(b: int, pool: Pool) -> dict[Outcome, float]:
    """Both outcome prices. They sum to 1 within float precision."""
    _check_b(b)
    p_yes = _price_yes(b, pool.q_yes, pool.q_no)
    return {Outcome.YES: float(p_yes), Outcome.NO: float(1 - p_yes)}


def trade_cost(b: int, pool: Pool, outcome: Outcome, delta: int) -> int:
    """Raw cost of changing ``outcome`` shares by ``delta``.

    delta > 0 (buy): strictly positive, rounded up, at least 1.
    delta < 0 (sell): negative proceeds, magnitude rounded down.
    """
    _check_b(b)
    if delta == 0:
        raise InvalidTradeError("share amount must be non-zero")
    after = pool.apply(outcome, delta)
    if after.shares(outcome) < 0:
        raise InvalidTradeError(
            f"cannot sell {-delta} {outcome.value} shares, pool holds {pool.shares(outcome)}"
        )
    diff = _cost_exact(b, after.q_yes, after.q_no) - _cost_exact(b, pool.q_yes, pool.q_no)
    if delta > 0:
        return max(1, int(diff.to_integral_value(rounding=ROUND_CEILING)))
    return -int((-diff).to_integral_value(rounding=ROUND_FLOOR))


def quote(b: int, pool: Pool, outcome: Outcome, delta: int) -> Quote:
    amount = trade_cost(b, pool, outcome, delta)
    after = pool.apply(outcome, delta)
    return Quote(
        outcome=outcome,
        shares=delta,
        cost=amount,
        pool_before=pool,
        pool_after=after,
        price_before=price(b, pool, outcome),
        price_after=price(b, after, outcome),
    )


def shares_for_cost(b: int, pool: Pool, outcome: Outcome, budget: int) -> int:
    """Largest Δ >= 0 whose buy cost does not exceed ``budget`` (binary search)."""
    _check_b(b)
    if budget <= 0:
        return 0
    # cost(Δ) >= Δ·price_before > 0, so doubling terminates
    hi = 1
    while trade_cost(b, pool, outcome, hi) <= budget:
        hi *= 2
    lo, best = 1, 0
    while lo < hi:
        mid = (lo + hi) // 2
        if trade_cost(b, pool, outcome, mid) <= budget:
            best, lo = mid, mid + 1
        else:
            hi = mid
    return best


def max_loss(b: int) -> int:
    """Worst-case market-maker loss for a binary LMSR market: ceil(b·ln 2)."""
    _check_b(b)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int((Decimal(b) * _LN2).to_integral_value(rounding=ROUND_CEILING))


def liquidity_parameter_for_subsidy(subsidy: int) -> int:
    """Largest b whose worst-case loss is covered by ``subsidy`` raw units."""
    if subsidy <= 0:
        raise ValueError(f"subsidy must be positive, got {subsidy}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        b = int((Decimal(subsidy) / _LN2).to_integral_value(rounding=ROUND_FLOOR))
    if b <= 0:
        raise ValueError(f"subsidy {subsidy} too small for a positive liquidity parameter")
    return b
