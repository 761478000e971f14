"""
Tick math (Uniswap V3 TickMath, integer exact).

Ticks index prices as ``1.0001**tick``; square-root prices are Q64.96.
Results match the on-chain library bit for bit so that oracle ticks and
funding multipliers agree with the reference feed.
"""

from __future__ import annotations

from ..constants import (
    MAX_SQRT_RATIO,
    MAX_TICK,
    MIN_SQRT_RATIO,
    MIN_TICK,
    Q192,
    UINT256_MAX,
)

# sqrt(1.0001^-(2^i)) in Q128.128, i = 0..19
_RATIOS = (
    0xfffcb933bd6fad37aa2d162d1a594001,
    0xfff97272373d413259a46990580e213a,
    0xfff2e50f5f656932ef12357cf3c7fdcc,
    0xffe5caca7e10e4e61c3624eaa0941cd0,
    0xffcb9843d60f6159c9db58835c926644,
    0xff973b41fa98c081472e6896dfb254c0,
    0xff2ea16466c96a3843ec78b326b52861,
    0xfe5dee046a99a2a811c461f1969c3053,
    0xfcbe86c7900a88aedcffc83b479aa3a4,
    0xf987a7253ac413176f2b074cf7815e54,
    0xf3392b0822b70005940c7a398e4b70f3,
    0xe7159475a2c29b7443b29c7fa6e889d9,
    0xd097f3bdfd2022b8845ad8f792aa5825,
    0xa9f746462d870fdf8a65dc1f90e061e5,
    0x70d869a156d2a1b890bb3df62baf32f7,
    0x31be135f97d08fd981231505542fcfa6,
    0x9aa508b5b7a84e1c677de54f3e99bc9,
    0x5d6af8dedb81196699c329225ee604,
    0x2216e584f5fa1ea926041bedfe98,
    0x48a170391f7dc42444e8fa2,
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """sqrt(1.0001^tick) * 2^96, rounded up."""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"Tick {tick} out of bounds")
    abs_tick = -tick if tick < 0 else tick

    ratio = 1 << 128
    for i, factor in enumerate(_RATIOS):
        if abs_tick & (1 << i):
            ratio = (ratio * factor) >> 128

    if tick > 0:
        ratio = UINT256_MAX // ratio

    # Q128.128 -> Q64.96, rounding up
    return (ratio >> 32) + (1 if ratio % (1 << 32) else 0)


def get_tick_at_sqrt_ratio(sqrt_price_x96: int) -> int:
    """Greatest tick whose sqrt ratio is <= ``sqrt_price_x96``."""
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ValueError(f"sqrt_price_x96 {sqrt_price_x96} out of bounds")

    lo, hi = MIN_TICK, MAX_TICK
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if get_sqrt_ratio_at_tick(mid) <= sqrt_price_x96:
            lo = mid
        else:
            hi = mid - 1
    return lo


def price_x192_at_tick(tick: int) -> int:
    """1.0001^tick scaled by 2^192 (squared sqrt ratio)."""
    sqrt_ratio = get_sqrt_ratio_at_tick(tick)
    return sqrt_ratio * sqrt_ratio


def mul_by_tick_ratio(amount: int, tick: int, round_up: bool = False) -> int:
    """``amount * 1.0001^tick`` using the TickMath ratio."""
    numerator = amount * price_x192_at_tick(tick)
    if round_up:
        return -(-numerator // Q192)
    return numerator // Q192
