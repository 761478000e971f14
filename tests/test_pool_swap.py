"""
Tests for pool swaps

Covers:
  - Exact input / exact output in both directions
  - Fee accounting and curve growth
  - Price limit truncation and validation
  - No-op, no-progress and empty-pool edge cases
"""

import math

import pytest

from conftest import BOB, FUNDS, LIQUIDITY, pay_from, pay_nothing

from marginpool.constants import FEE, MAX_SQRT_RATIO, MIN_SQRT_RATIO, Q96
from marginpool.core.swap_math import swap_amounts, swap_fees
from marginpool.core.tick_math import get_sqrt_ratio_at_tick
from marginpool.exceptions import (
    InsufficientLiquidity,
    InvalidSqrtPriceLimit,
    Locked,
    PaymentNotReceived,
    SwapNoProgress,
)

AMOUNT = 10**15


def assert_backed(pool):
    """Curve reserves never exceed the tokens the pool holds."""
    reserve0, reserve1 = pool.reserves()
    assert pool.token0.balance_of(pool.address) >= reserve0
    assert pool.token1.balance_of(pool.address) >= reserve1


class TestExactInput:
    """amount_specified > 0."""

    def test_zero_for_one(self, pool):
        amount0, amount1 = pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))
        fees = swap_fees(AMOUNT, FEE, fee_included=True)
        assert amount0 == AMOUNT
        expected_out = (AMOUNT - fees) * LIQUIDITY / (LIQUIDITY + AMOUNT - fees)
        assert -amount1 == pytest.approx(expected_out, rel=1e-9)
        assert pool.token1.balance_of(BOB) == FUNDS - amount1
        assert pool.state.sqrt_price_x96 < Q96
        assert_backed(pool)

    def test_one_for_zero(self, pool):
        amount0, amount1 = pool.swap(BOB, BOB, False, AMOUNT, MAX_SQRT_RATIO - 1, pay_from(pool, BOB))
        assert amount1 == AMOUNT
        assert amount0 < 0
        assert pool.token0.balance_of(BOB) == FUNDS - amount0
        assert pool.state.sqrt_price_x96 > Q96
        assert_backed(pool)

    def test_fees_grow_liquidity(self, pool):
        pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))
        state = pool.state
        assert state.liquidity > LIQUIDITY
        reserve0, reserve1 = pool.reserves()
        assert state.liquidity == pytest.approx(math.isqrt(reserve0 * reserve1), rel=1e-12)

    def test_round_trip_loses_fees(self, pool):
        _, amount1 = pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))
        amount0, _ = pool.swap(BOB, BOB, False, -amount1, MAX_SQRT_RATIO - 1, pay_from(pool, BOB))
        assert -amount0 < AMOUNT
        assert pool.token0.balance_of(BOB) < FUNDS

    def test_event(self, pool):
        pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))
        event = pool.events[-1]
        assert event.event == "Swap"
        assert event.to_dict()["amount0"] == AMOUNT


class TestExactOutput:
    """amount_specified < 0."""

    def test_zero_for_one(self, pool):
        amount0, amount1 = pool.swap(BOB, BOB, True, -AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))
        assert amount1 == -AMOUNT
        curve_in, _ = swap_amounts(LIQUIDITY, Q96, Q96 - (-(-(AMOUNT * Q96) // LIQUIDITY)))
        assert amount0 == curve_in + swap_fees(curve_in, FEE)
        assert_backed(pool)

    def test_one_for_zero(self, pool):
        amount0, amount1 = pool.swap(BOB, BOB, False, -AMOUNT, MAX_SQRT_RATIO - 1, pay_from(pool, BOB))
        assert amount0 == -AMOUNT
        assert amount1 > AMOUNT
        assert_backed(pool)

    def test_more_than_reserve_truncates(self, pool):
        limit = get_sqrt_ratio_at_tick(-1000)
        amount0, amount1 = pool.swap(BOB, BOB, True, -2 * LIQUIDITY, limit, pay_from(pool, BOB))
        assert -amount1 == LIQUIDITY * (Q96 - limit) // Q96
        assert amount0 > 0


class TestPriceLimit:
    """Truncation and validation."""

    def test_truncates_at_limit(self, pool):
        limit = get_sqrt_ratio_at_tick(-10)
        amount0, _ = pool.swap(BOB, BOB, True, 100 * AMOUNT, limit, pay_from(pool, BOB))
        curve_in, _ = swap_amounts(LIQUIDITY, Q96, limit)
        assert amount0 == curve_in + swap_fees(curve_in, FEE)
        assert amount0 < 100 * AMOUNT
        assert pool.state.sqrt_price_x96 <= limit

    @pytest.mark.parametrize("zero_for_one, limit", [
        (True, Q96),
        (True, Q96 + 1),
        (True, MIN_SQRT_RATIO),
        (False, Q96),
        (False, Q96 - 1),
        (False, MAX_SQRT_RATIO),
    ])
    def test_invalid_limit(self, pool, zero_for_one, limit):
        with pytest.raises(InvalidSqrtPriceLimit):
            pool.swap(BOB, BOB, zero_for_one, AMOUNT, limit, pay_from(pool, BOB))


class TestEdgeCases:
    """No-ops and failures."""

    def test_zero_amount_is_noop(self, pool):
        count = len(pool.events)
        assert pool.swap(BOB, BOB, True, 0, MIN_SQRT_RATIO + 1, pay_nothing) == (0, 0)
        assert len(pool.events) == count
        assert pool.state.sqrt_price_x96 == Q96

    def test_dust_makes_no_progress(self, pool):
        with pytest.raises(SwapNoProgress):
            pool.swap(BOB, BOB, True, 1, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))

    def test_empty_pool(self, empty_pool):
        with pytest.raises(InsufficientLiquidity):
            empty_pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(empty_pool, BOB))

    def test_unpaid_swap_reverts_output(self, pool):
        with pytest.raises(PaymentNotReceived):
            pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_nothing)
        assert pool.token1.balance_of(BOB) == FUNDS
        assert pool.state.sqrt_price_x96 == Q96

    def test_reentrant_swap(self, pool):
        def reenter(amount0, amount1, data):
            pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, pay_from(pool, BOB))

        with pytest.raises(Locked):
            pool.swap(BOB, BOB, True, AMOUNT, MIN_SQRT_RATIO + 1, reenter)
