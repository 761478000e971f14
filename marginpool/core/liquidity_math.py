"""
Liquidity and share math for the single-range constant-liquidity curve.

The curve holds ``liquidity**2 == reserve0 * reserve1`` with
``sqrt_price = sqrt(reserve1 / reserve0)``. Amounts a payer owes round up,
amounts a receiver is credited round down.
"""

from __future__ import annotations

import math
from typing import Tuple

from ..constants import MINIMUM_LIQUIDITY, Q96, Q192
from ..exceptions import InvalidLiquidityDelta


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


def to_amounts(liquidity: int, sqrt_price_x96: int, round_up: bool = False) -> Tuple[int, int]:
    """
    Token amounts backing ``liquidity`` at ``sqrt_price_x96``.

    amount0 = L * 2^96 / sqrtP, amount1 = L * sqrtP / 2^96
    """
    if sqrt_price_x96 <= 0:
        raise ValueError("sqrt_price_x96 must be positive")
    if round_up:
        amount0 = _div_up(liquidity << 96, sqrt_price_x96)
        amount1 = _div_up(liquidity * sqrt_price_x96, Q96)
    else:
        amount0 = (liquidity << 96) // sqrt_price_x96
        amount1 = (liquidity * sqrt_price_x96) >> 96
    return amount0, amount1


def liquidity_for_amount0(sqrt_price_x96: int, amount0: int) -> int:
    """Liquidity backed by ``amount0`` of token0, rounded down."""
    return (amount0 * sqrt_price_x96) >> 96


def liquidity_for_amount1(sqrt_price_x96: int, amount1: int) -> int:
    """Liquidity backed by ``amount1`` of token1, rounded down."""
    return (amount1 << 96) // sqrt_price_x96


def liquidity_for_amounts(sqrt_price_x96: int, amount0: int, amount1: int) -> int:
    """
    Largest liquidity delta whose ``to_amounts`` fits within both desired
    amounts. Quotes the ``liquidity_delta`` argument of ``MarginPool.mint``.
    """
    return min(
        liquidity_for_amount0(sqrt_price_x96, amount0),
        liquidity_for_amount1(sqrt_price_x96, amount1),
    )


def liquidity_sqrt_price_x96_next(reserve0: int, reserve1: int) -> Tuple[int, int]:
    """Curve (liquidity, sqrt_price_x96) implied by the given reserves."""
    if reserve0 <= 0 or reserve1 <= 0:
        raise ValueError("Reserves must be positive")
    liquidity = math.isqrt(reserve0 * reserve1)
    sqrt_price_x96 = math.isqrt((reserve1 * Q192) // reserve0)
    return liquidity, sqrt_price_x96


def shares_for_liquidity(liquidity_delta: int, total_shares: int, total_liquidity: int) -> int:
    """
    Shares minted for adding ``liquidity_delta``.

    On the first deposit the caller receives ``liquidity_delta -
    MINIMUM_LIQUIDITY``; the remaining ``MINIMUM_LIQUIDITY`` shares go to the
    pool itself and stay there.
    """
    if liquidity_delta <= 0:
        raise InvalidLiquidityDelta("Liquidity delta must be positive")
    if total_shares == 0:
        if liquidity_delta <= MINIMUM_LIQUIDITY:
            raise InvalidLiquidityDelta(
                f"First deposit must exceed {MINIMUM_LIQUIDITY} liquidity (got {liquidity_delta})"
            )
        return liquidity_delta - MINIMUM_LIQUIDITY
    return liquidity_delta * total_shares // total_liquidity


def liquidity_for_shares(shares: int, total_shares: int, total_liquidity: int) -> int:
    """Liquidity redeemed by burning ``shares``."""
    if total_shares == 0:
        return 0
    return shares * total_liquidity // total_shares
