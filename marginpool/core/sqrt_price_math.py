"""
Square-root price math.

Next price after a signed reserve delta (swap) and after locking liquidity
out of the curve for a leveraged position (open). Rounding always favours
the pool: a taker never receives more than the curve allows.
"""

from __future__ import annotations

import math

from ..constants import MAINTENANCE_UNIT, MAX_SQRT_RATIO, MIN_SQRT_RATIO, Q96, Q192
from ..exceptions import InvalidLiquidityDelta


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


# ---------------------------------------------------------------------------
# Swap
# ---------------------------------------------------------------------------

def next_sqrt_price_from_amount(
    liquidity: int,
    sqrt_price_x96: int,
    zero_for_one: bool,
    amount_specified: int,
) -> int:
    """
    Price after trading ``amount_specified`` against the curve.

    ``amount_specified > 0`` is exact input (token0 in when zero_for_one),
    ``< 0`` is exact output (token1 out when zero_for_one). An exact output
    the reserve cannot cover returns the price bound in the direction of
    travel, which the caller's price limit then truncates.
    """
    if liquidity <= 0:
        raise ValueError("Liquidity must be positive")
    if amount_specified == 0:
        return sqrt_price_x96

    exact_input = amount_specified > 0
    amount = abs(amount_specified)
    numerator = liquidity << 96

    if zero_for_one:
        if exact_input:
            # token0 in: L*P / (L + a*P), rounded up
            return _div_up(numerator * sqrt_price_x96, numerator + amount * sqrt_price_x96)
        # token1 out: P - a/L, rounded down
        next_price = sqrt_price_x96 - _div_up(amount << 96, liquidity)
        return next_price if next_price > MIN_SQRT_RATIO else MIN_SQRT_RATIO

    if exact_input:
        # token1 in: P + a/L, rounded down
        return sqrt_price_x96 + (amount << 96) // liquidity
    # token0 out: L*P / (L - a*P), rounded up
    denominator = numerator - amount * sqrt_price_x96
    if denominator <= 0:
        return MAX_SQRT_RATIO
    next_price = _div_up(numerator * sqrt_price_x96, denominator)
    return next_price if next_price < MAX_SQRT_RATIO else MAX_SQRT_RATIO


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------

def sqrt_price_x96_next_open(
    liquidity: int,
    sqrt_price_x96: int,
    liquidity_delta: int,
    zero_for_one: bool,
    maintenance: int,
) -> int:
    """
    Price after removing ``liquidity_delta`` from the curve to back a position.

    With m the maintenance ratio:

        root = sqrt(1 - 4*dL*(L - dL) / (L^2 * (1 + m)))
        r    = 2*(L - dL) / (L * (1 + root))

    The price moves to ``P * r`` for zero_for_one (rounded up) and to
    ``P / r`` otherwise (rounded down).
    """
    if liquidity_delta <= 0 or liquidity_delta >= liquidity:
        raise InvalidLiquidityDelta(
            f"Liquidity delta {liquidity_delta} must be in (0, {liquidity})"
        )

    prod = liquidity * liquidity * (MAINTENANCE_UNIT + maintenance)
    under = prod - 4 * liquidity_delta * (liquidity - liquidity_delta) * MAINTENANCE_UNIT
    root_x96 = math.isqrt((under * Q192) // prod)

    ratio_x96 = (2 * (liquidity - liquidity_delta) * Q192) // (liquidity * (Q96 + root_x96))
    if ratio_x96 == 0:
        raise InvalidLiquidityDelta("Liquidity delta leaves no liquidity on the curve")

    if zero_for_one:
        next_price = _div_up(sqrt_price_x96 * ratio_x96, Q96)
        if next_price <= MIN_SQRT_RATIO:
            raise InvalidLiquidityDelta("Open would move price below MIN_SQRT_RATIO")
    else:
        next_price = (sqrt_price_x96 * Q96) // ratio_x96
        if next_price >= MAX_SQRT_RATIO:
            raise InvalidLiquidityDelta("Open would move price above MAX_SQRT_RATIO")
    return next_price
