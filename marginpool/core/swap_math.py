"""
Swap math: token deltas between two prices and fee helpers.

Sign convention: positive amounts flow into the pool, negative amounts
flow out. Inputs round up, outputs round down.
"""

from __future__ import annotations

from typing import Tuple

from ..constants import FEE_UNIT, Q96


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


def swap_amounts(liquidity: int, sqrt_price_x96: int, sqrt_price_x96_next: int) -> Tuple[int, int]:
    """Signed (amount0, amount1) for moving the curve from one price to the next."""
    if sqrt_price_x96_next == sqrt_price_x96:
        return 0, 0

    lower, upper = sorted((sqrt_price_x96, sqrt_price_x96_next))
    diff = upper - lower

    if sqrt_price_x96_next < sqrt_price_x96:
        # price down: token0 in, token1 out
        amount0 = _div_up((liquidity << 96) * diff, upper * lower)
        amount1 = -((liquidity * diff) // Q96)
    else:
        # price up: token1 in, token0 out
        amount0 = -(((liquidity << 96) * diff) // (upper * lower))
        amount1 = _div_up(liquidity * diff, Q96)
    return amount0, amount1


def swap_fees(amount: int, fee: int, fee_included: bool = False) -> int:
    """
    Fee on ``amount`` in parts per FEE_UNIT.

    ``fee_included`` is for amounts that already contain the fee (exact
    input): the fee is then ``amount * fee / (FEE_UNIT + fee)`` so that
    ``amount - fees`` plus ``swap_fees(amount - fees, fee)`` gives back
    ``amount`` up to one unit of rounding.
    """
    if amount < 0:
        raise ValueError("Fee base amount must be non-negative")
    if fee_included:
        return (amount * fee) // (FEE_UNIT + fee)
    return (amount * fee) // FEE_UNIT
