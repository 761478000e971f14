"""
Leveraged position accounting

A position borrows curve liquidity: opening locks ``liquidity_delta`` out
of the curve, moving the price as if the trader had swapped, and records
  - size:       output-token notional held by the pool for the trader
  - debt:       input-token amount owed back to the pool
  - insurance:  tokens of the removed liquidity the pool keeps in reserve
  - margin:     trader collateral, in the same token as size

Funding accrues on debt from the divergence between the pool's and the
reference feed's tick cumulatives. Solvency is judged at the oracle price,
never the pool's own price.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from eth_utils import encode_hex, keccak, to_canonical_address

from ..constants import (
    MAINTENANCE_UNIT,
    MAX_TICK,
    MIN_TICK,
    Q96,
    Q192,
    REWARD_UNIT,
    UINT256_MAX,
)
from ..exceptions import SizeGreaterThanReserve
from .liquidity_math import to_amounts
from .tick_math import get_sqrt_ratio_at_tick, mul_by_tick_ratio

HEALTH_UNIT = 10**18


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


def _div_trunc(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class Position:
    """
    A leveraged position.

    zero_for_one positions owe token0 (``debt0``) and hold size and margin in
    token1; the reverse owe token1 and hold token0.
    """
    owner: str = ""
    id: int = 0
    zero_for_one: bool = False
    size: int = 0
    debt0: int = 0
    debt1: int = 0
    insurance0: int = 0
    insurance1: int = 0
    margin: int = 0
    liquidity_locked: int = 0
    tick: int = 0
    tick_cumulative_delta: int = 0
    funding_remainder: int = 0
    block_timestamp: int = 0
    rewards: int = 0
    liquidated: bool = False

    @property
    def debt(self) -> int:
        return self.debt0 if self.zero_for_one else self.debt1

    @property
    def is_active(self) -> bool:
        return self.size > 0 and not self.liquidated


def position_key(owner: str, position_id: int) -> str:
    """keccak256(owner ++ uint96 id), hex encoded."""
    return encode_hex(keccak(to_canonical_address(owner) + position_id.to_bytes(12, "big")))


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------

def liquidity_for_size(
    liquidity: int,
    sqrt_price_x96: int,
    maintenance: int,
    zero_for_one: bool,
    size: int,
) -> int:
    """
    Liquidity to lock so that opening yields ``size`` of the output token.

    Inverts the open price move: with R the output reserve and m the
    maintenance ratio, ``dL = L * size / (R - (R - size)^2 / (R * (1 + m)))``.
    """
    reserve0, reserve1 = to_amounts(liquidity, sqrt_price_x96)
    reserve = reserve1 if zero_for_one else reserve0
    if size >= reserve:
        raise SizeGreaterThanReserve(f"Size {size} >= reserve {reserve}")

    prod = ((reserve - size) ** 2) // reserve
    denom = reserve - (prod * MAINTENANCE_UNIT) // (MAINTENANCE_UNIT + maintenance)
    return (liquidity * size) // denom


def size_for(liquidity: int, sqrt_price_x96: int, sqrt_price_x96_next: int, zero_for_one: bool) -> int:
    """Output-token notional of the price move, rounded down."""
    if zero_for_one:
        return (liquidity * (sqrt_price_x96 - sqrt_price_x96_next)) // Q96
    return ((liquidity << 96) * (sqrt_price_x96_next - sqrt_price_x96)) // (
        sqrt_price_x96 * sqrt_price_x96_next
    )


def debts_for(
    liquidity: int, sqrt_price_x96: int, sqrt_price_x96_next: int, zero_for_one: bool
) -> Tuple[int, int]:
    """Input-token amount owed for the price move, rounded up."""
    if zero_for_one:
        debt0 = _div_up(
            (liquidity << 96) * (sqrt_price_x96 - sqrt_price_x96_next),
            sqrt_price_x96 * sqrt_price_x96_next,
        )
        return debt0, 0
    debt1 = _div_up(liquidity * (sqrt_price_x96_next - sqrt_price_x96), Q96)
    return 0, debt1


def insurances_for(
    liquidity_delta: int, sqrt_price_x96_next: int, debt0: int, debt1: int
) -> Tuple[int, int]:
    """
    Tokens of the locked liquidity left in the pool, net of debt.

    The locked liquidity is worth ``to_amounts(dL, Pn)``; the debt side is
    only virtually present until repaid.
    """
    amount0, amount1 = to_amounts(liquidity_delta, sqrt_price_x96_next)
    return amount0 - debt0, amount1 - debt1


def assemble(
    liquidity: int,
    sqrt_price_x96: int,
    sqrt_price_x96_next: int,
    liquidity_delta: int,
    zero_for_one: bool,
    tick: int,
    block_timestamp: int,
    tick_cumulative_delta: int,
    margin: int = 0,
    rewards: int = 0,
) -> Position:
    """Build a position record from the liquidity locked and the price move it caused."""
    size = size_for(liquidity, sqrt_price_x96, sqrt_price_x96_next, zero_for_one)
    debt0, debt1 = debts_for(liquidity, sqrt_price_x96, sqrt_price_x96_next, zero_for_one)
    insurance0, insurance1 = insurances_for(liquidity_delta, sqrt_price_x96_next, debt0, debt1)
    return Position(
        zero_for_one=zero_for_one,
        size=size,
        debt0=debt0,
        debt1=debt1,
        insurance0=insurance0,
        insurance1=insurance1,
        margin=margin,
        liquidity_locked=liquidity_delta,
        tick=tick,
        tick_cumulative_delta=tick_cumulative_delta,
        block_timestamp=block_timestamp,
        rewards=rewards,
    )


# ---------------------------------------------------------------------------
# Funding
# ---------------------------------------------------------------------------

def sync(
    position: Position,
    tick_cumulative_last: int,
    oracle_tick_cumulative_last: int,
    block_timestamp: int,
    funding_period: int,
    tick_cumulative_rate_max: int,
) -> Position:
    """
    Accrue funding on debt since the last sync.

    The change in (oracle - pool) tick cumulative since the last snapshot is
    clamped to ``tick_cumulative_rate_max`` per elapsed second, then spread
    over ``funding_period``. zero_for_one debt grows when the pool trades
    below the oracle, the other side when it trades above.

    Only whole funding ticks are charged. The uncharged part of the delta
    is kept in ``funding_remainder`` and counted at the next sync, so the
    debt does not depend on how often the position is synced.
    """
    tick_cumulative_delta_last = oracle_tick_cumulative_last - tick_cumulative_last
    delta = tick_cumulative_delta_last - position.tick_cumulative_delta

    delta_max = tick_cumulative_rate_max * max(block_timestamp - position.block_timestamp, 0)
    if delta > delta_max:
        delta = delta_max
    elif delta < -delta_max:
        delta = -delta_max

    delta += position.funding_remainder
    funding_tick = _div_trunc(delta, funding_period)
    funding_tick = max(MIN_TICK, min(MAX_TICK, funding_tick))
    funding_remainder = delta - funding_tick * funding_period

    debt0, debt1 = position.debt0, position.debt1
    if position.zero_for_one:
        debt0 = mul_by_tick_ratio(debt0, funding_tick, round_up=True)
    else:
        debt1 = mul_by_tick_ratio(debt1, -funding_tick, round_up=True)

    return replace(
        position,
        debt0=debt0,
        debt1=debt1,
        tick_cumulative_delta=tick_cumulative_delta_last,
        funding_remainder=funding_remainder,
        block_timestamp=block_timestamp,
    )


# ---------------------------------------------------------------------------
# Solvency
# ---------------------------------------------------------------------------

def debt_adjusted(debt: int, maintenance: int) -> int:
    """Debt grossed up by the maintenance ratio."""
    return (debt * (MAINTENANCE_UNIT + maintenance)) // MAINTENANCE_UNIT


def margin_minimum(
    position: Position, maintenance: int, sqrt_price_x96: Optional[int] = None
) -> int:
    """
    Smallest margin keeping ``size + margin`` >= maintenance-adjusted debt.

    Debt is valued in the margin token at ``sqrt_price_x96`` (the oracle
    price; defaults to the position's recorded oracle tick).
    """
    if sqrt_price_x96 is None:
        sqrt_price_x96 = get_sqrt_ratio_at_tick(position.tick)
    debt_adj = debt_adjusted(position.debt, maintenance)
    price_x192 = sqrt_price_x96 * sqrt_price_x96
    if position.zero_for_one:
        debt_in_margin = _div_up(debt_adj * price_x192, Q192)
    else:
        debt_in_margin = _div_up(debt_adj * Q192, price_x192)
    return max(debt_in_margin - position.size, 0)


def health_factor(
    zero_for_one: bool,
    size: int,
    debt: int,
    margin: int,
    maintenance: int,
    sqrt_price_x96: int,
) -> int:
    """
    Collateral over maintenance-adjusted debt at ``sqrt_price_x96``, scaled by 1e18.

    Exactly 1e18 is the liquidation boundary. Debt-free positions return
    ``2**256 - 1``.
    """
    debt_adj = debt_adjusted(debt, maintenance)
    if debt_adj == 0:
        return UINT256_MAX
    collateral = size + margin
    price_x192 = sqrt_price_x96 * sqrt_price_x96
    if zero_for_one:
        return (collateral * HEALTH_UNIT * Q192) // (debt_adj * price_x192)
    return (collateral * HEALTH_UNIT * price_x192) // (debt_adj * Q192)


def position_health_factor(position: Position, maintenance: int, sqrt_price_x96: int) -> int:
    return health_factor(
        position.zero_for_one,
        position.size,
        position.debt,
        position.margin,
        maintenance,
        sqrt_price_x96,
    )


def safe(position: Position, maintenance: int, sqrt_price_x96: int) -> bool:
    """True when the position may be settled and may not be liquidated."""
    return position.margin >= margin_minimum(position, maintenance, sqrt_price_x96)


def liquidation_sqrt_price_x96(position: Position, maintenance: int) -> int:
    """Oracle sqrt price at which the position's health factor is exactly 1."""
    debt_adj = debt_adjusted(position.debt, maintenance)
    collateral = position.size + position.margin
    if position.zero_for_one:
        numerator, denominator = collateral, debt_adj
    else:
        numerator, denominator = debt_adj, collateral
    if denominator == 0:
        return 0 if numerator == 0 else UINT256_MAX
    return math.isqrt((numerator * Q192) // denominator)


def liquidation_rewards(base_fee: int, base_fee_min: int, gas_liquidate: int, reward_premium: int) -> int:
    """Native-currency deposit that pays a liquidator's gas with a premium."""
    return (max(base_fee, base_fee_min) * gas_liquidate * reward_premium) // REWARD_UNIT


# ---------------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------------

def amounts_on_settle(position: Position) -> Tuple[int, int]:
    """
    Signed token flows for a voluntary close, from the pool's side.

    The trader repays debt (into the pool) and receives size + margin (out).
    """
    collateral = position.size + position.margin
    if position.zero_for_one:
        return position.debt0, -collateral
    return -collateral, position.debt1


def amounts_unlocked_on_settle(position: Position) -> Tuple[int, int]:
    """Tokens returned to the curve reserves when the debt is repaid."""
    return position.insurance0 + position.debt0, position.insurance1 + position.debt1


def amounts_unlocked_on_liquidate(position: Position) -> Tuple[int, int]:
    """Tokens returned to the curve reserves when the trader's collateral is seized."""
    collateral = position.size + position.margin
    if position.zero_for_one:
        return position.insurance0, position.insurance1 + collateral
    return position.insurance0 + collateral, position.insurance1


def liquidate(position: Position) -> Position:
    """Zeroed record flagged as liquidated."""
    return Position(
        owner=position.owner,
        id=position.id,
        zero_for_one=position.zero_for_one,
        liquidated=True,
    )
