"""
Marginpool Leveraged-Trading Pool

Single-curve AMM that also lends its liquidity to margined positions:
  - Constant-liquidity curve (liquidity^2 = reserve0 * reserve1), Q64.96 price
  - Spot swaps with a fee retained in reserves
  - LP shares minted / burned against curve + locked liquidity
  - Leveraged positions: open, lock (margin top-up), settle, liquidate
  - Funding priced against an external reference feed TWAP

Security features:
  - Reentrancy lock around every state mutation (callbacks cannot re-enter)
  - Snapshot / restore: a failed operation leaves state and ledgers untouched
  - Optimistic transfer -> caller callback -> balance verification
  - Caller deadlines, price limits, size / debt / payment caps
  - Solvency judged at the oracle price, not the pool's own price
  - Minimum liquidity locked on first deposit
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from eth_utils import to_checksum_address

from ..config import MarginPoolConfig
from ..constants import MAX_SQRT_RATIO, MINIMUM_LIQUIDITY, MIN_SQRT_RATIO
from ..exceptions import (
    AlreadyInitialized,
    AmountInGreaterThanMax,
    DeadlineExpired,
    DebtGreaterThanMax,
    InsufficientLiquidity,
    InvalidLiquidityDelta,
    InvalidMarginIn,
    InvalidPosition,
    InvalidSqrtPriceLimit,
    InvalidSqrtPriceX96,
    Locked,
    MarginLessThanMin,
    NotInitialized,
    PaymentNotReceived,
    PositionLiquidated,
    PositionNotSafe,
    PositionSafe,
    RewardsLessThanMin,
    SizeLessThanMin,
    SqrtPriceLimitExceeded,
    SwapNoProgress,
    Unauthorized,
)
from ..logger import get_logger
from ..tokens import ShareToken, Token
from . import position as position_lib
from .environment import BlockEnvironment
from .liquidity_math import (
    liquidity_for_shares,
    liquidity_sqrt_price_x96_next,
    shares_for_liquidity,
    to_amounts,
)
from .oracle import (
    ReferenceFeed,
    average_tick,
    funding_ratio_x96,
    oracle_tick_cumulative,
)
from .position import Position, position_key
from .sqrt_price_math import next_sqrt_price_from_amount, sqrt_price_x96_next_open
from .swap_math import swap_amounts, swap_fees
from .tick_math import get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio

logger = get_logger(__name__)

# callback(amount0_owed, amount1_owed, data); positive amounts must reach the pool before it returns
PaymentCallback = Callable[[int, int, Any], None]


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class PoolState:
    """Global curve and position-book state of a pool."""
    liquidity: int = 0
    sqrt_price_x96: int = 0
    tick: int = 0
    tick_cumulative: int = 0
    block_timestamp_last: int = 0
    total_positions: int = 0
    liquidity_locked: int = 0
    initialized: bool = False

    @property
    def liquidity_total(self) -> int:
        return self.liquidity + self.liquidity_locked


@dataclass(frozen=True)
class PoolEvent:
    """Log entry emitted by a successful pool operation."""
    event: str
    block_timestamp: int
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.event, "blockTimestamp": self.block_timestamp, **self.args}


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class MarginPool:
    """
    Leveraged-trading pool for one (token0, token1, maintenance, oracle) key.

    Entry points take the acting address explicitly (``sender``) and, where
    the caller owes tokens, a ``callback`` that must transfer them to
    ``pool.address`` before returning.
    """

    def __init__(
        self,
        address: str,
        factory: str,
        token0: Token,
        token1: Token,
        maintenance: int,
        oracle: ReferenceFeed,
        env: BlockEnvironment,
        native: Token,
        config: Optional[MarginPoolConfig] = None,
    ):
        self.address = to_checksum_address(address)
        self.factory = to_checksum_address(factory)
        self.token0 = token0
        self.token1 = token1
        self.maintenance = maintenance
        self.oracle = oracle
        self.env = env
        self.native = native
        self.config = config or MarginPoolConfig()

        self.fee = self.config.pool.fee
        self.reward_premium = self.config.pool.reward_premium

        self.shares = ShareToken(
            address=self.address,
            name=f"Marginpool {token0.symbol}/{token1.symbol} {maintenance} LP",
            symbol="MP-LP",
            minter=self.address,
            locked=[self.address],
        )

        self._state = PoolState()
        self._positions: Dict[str, Position] = {}
        self._owners: Dict[int, str] = {}  # position id -> owner
        self._events: List[PoolEvent] = []
        self._locked: bool = False  # reentrancy guard

    def __repr__(self) -> str:
        return f"MarginPool({self.token0.symbol}/{self.token1.symbol}, maintenance={self.maintenance}, {self.address})"

    # -- Reentrancy guard ---------------------------------------------------

    def _acquire_lock(self) -> None:
        if self._locked:
            raise Locked("Reentrancy detected: pool is locked")
        self._locked = True

    def _release_lock(self) -> None:
        self._locked = False

    # -- Snapshot / restore -------------------------------------------------

    def _ledgers(self) -> List[Token]:
        ledgers: List[Token] = []
        for token in (self.token0, self.token1, self.native, self.shares):
            if all(token is not seen for seen in ledgers):
                ledgers.append(token)
        return ledgers

    def take_snapshot(self) -> Dict[str, Any]:
        """Capture pool state, positions and every ledger the pool touches."""
        return {
            "state": replace(self._state),
            "positions": {k: replace(p) for k, p in self._positions.items()},
            "owners": dict(self._owners),
            "events": len(self._events),
            "ledgers": [(token, token.take_snapshot()) for token in self._ledgers()],
        }

    def _restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self._state = snapshot["state"]
        self._positions = snapshot["positions"]
        self._owners = snapshot["owners"]
        del self._events[snapshot["events"]:]
        for token, token_snapshot in snapshot["ledgers"]:
            token.restore_snapshot(token_snapshot)

    @contextmanager
    def _transaction(self, deadline: Optional[int] = None) -> Iterator[None]:
        """Lock, check deadline, and revert everything if the body raises."""
        self._acquire_lock()
        snapshot = self.take_snapshot()
        try:
            if deadline is not None and self.env.timestamp > deadline:
                raise DeadlineExpired(f"Deadline {deadline} < block timestamp {self.env.timestamp}")
            yield
        except Exception as e:
            self._restore_snapshot(snapshot)
            logger.warning("Pool %s reverted: %s: %s", self.address, type(e).__name__, e)
            raise
        finally:
            self._release_lock()

    # -- Internal helpers ---------------------------------------------------

    def _require_initialized(self) -> None:
        if not self._state.initialized:
            raise NotInitialized(f"Pool {self.address} is not initialized")

    def _state_synced(self) -> None:
        """Accumulate tick * seconds since the last operation."""
        state = self._state
        dt = self.env.timestamp - state.block_timestamp_last
        if dt > 0:
            state.tick_cumulative += state.tick * dt
            state.block_timestamp_last = self.env.timestamp

    def _tick_cumulative_now(self) -> int:
        state = self._state
        return state.tick_cumulative + state.tick * max(self.env.timestamp - state.block_timestamp_last, 0)

    def _set_curve(self, liquidity: int, sqrt_price_x96: int) -> None:
        if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
            raise InvalidSqrtPriceX96(f"sqrt price {sqrt_price_x96} out of bounds")
        self._state.liquidity = liquidity
        self._state.sqrt_price_x96 = sqrt_price_x96
        self._state.tick = get_tick_at_sqrt_ratio(sqrt_price_x96)

    def _rebalance(self, add0: int, add1: int) -> None:
        """Fold extra tokens into the reserves and recompute the curve."""
        reserve0, reserve1 = to_amounts(self._state.liquidity, self._state.sqrt_price_x96)
        liquidity, sqrt_price_x96 = liquidity_sqrt_price_x96_next(reserve0 + add0, reserve1 + add1)
        self._set_curve(liquidity, sqrt_price_x96)

    def _check_sqrt_price_limit(self, zero_for_one: bool, sqrt_price_limit_x96: int) -> None:
        price = self._state.sqrt_price_x96
        if zero_for_one:
            valid = MIN_SQRT_RATIO < sqrt_price_limit_x96 < price
        else:
            valid = price < sqrt_price_limit_x96 < MAX_SQRT_RATIO
        if not valid:
            raise InvalidSqrtPriceLimit(
                f"Limit {sqrt_price_limit_x96} invalid for zero_for_one={zero_for_one} at price {price}"
            )

    def _collect(self, amount0: int, amount1: int, callback: Optional[PaymentCallback], data: Any) -> None:
        """Hand control to the caller, then verify it paid what it owes."""
        owed0, owed1 = max(amount0, 0), max(amount1, 0)
        if owed0 == 0 and owed1 == 0:
            return
        if callback is None:
            raise PaymentNotReceived("Payment owed but no callback supplied")

        balance0_before = self.token0.balance_of(self.address)
        balance1_before = self.token1.balance_of(self.address)
        callback(amount0, amount1, data)

        if owed0 > 0 and self.token0.balance_of(self.address) < balance0_before + owed0:
            raise PaymentNotReceived(f"{self.token0.symbol} payment of {owed0} not received")
        if owed1 > 0 and self.token1.balance_of(self.address) < balance1_before + owed1:
            raise PaymentNotReceived(f"{self.token1.symbol} payment of {owed1} not received")

    def _pay(self, token: Token, recipient: str, amount: int) -> None:
        if amount > 0:
            token.transfer(self.address, recipient, amount)

    def _emit(self, event: str, **args: Any) -> None:
        self._events.append(PoolEvent(event, self.env.timestamp, args))

    def _load_position(self, sender: str, position_id: int) -> Tuple[str, Position]:
        owner = self._owners.get(position_id)
        if owner is None:
            raise InvalidPosition(f"Position {position_id} does not exist")
        if owner != to_checksum_address(sender):
            raise Unauthorized(f"{sender} does not own position {position_id}")
        key = position_key(owner, position_id)
        position = self._positions.get(key)
        if position is None:
            raise InvalidPosition(f"Position {position_id} has been settled")
        if position.liquidated:
            raise PositionLiquidated(f"Position {position_id} was liquidated")
        return key, position

    def _sync_position(self, position: Position) -> Position:
        """Accrue funding and record the current oracle tick."""
        synced = position_lib.sync(
            position,
            self._tick_cumulative_now(),
            oracle_tick_cumulative(self.oracle),
            self.env.timestamp,
            self.config.oracle.funding_period,
            self.config.oracle.tick_cumulative_rate_max,
        )
        synced.tick = self.oracle_tick()
        return synced

    # -- Read accessors -----------------------------------------------------

    @property
    def state(self) -> PoolState:
        return replace(self._state)

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def events(self) -> List[PoolEvent]:
        return list(self._events)

    @property
    def total_supply(self) -> int:
        return self.shares.total_supply

    def balance_of(self, address: str) -> int:
        return self.shares.balance_of(address)

    def positions(self, key: str) -> Optional[Position]:
        position = self._positions.get(key)
        return replace(position) if position is not None else None

    def position(self, owner: str, position_id: int) -> Optional[Position]:
        return self.positions(position_key(owner, position_id))

    def reserves(self) -> Tuple[int, int]:
        if self._state.sqrt_price_x96 == 0:
            return 0, 0
        return to_amounts(self._state.liquidity, self._state.sqrt_price_x96)

    def oracle_tick(self) -> int:
        return average_tick(self.oracle, self.config.oracle.seconds_ago, self.env.timestamp)

    def oracle_sqrt_price_x96(self) -> int:
        return get_sqrt_ratio_at_tick(self.oracle_tick())

    def sqrt_prices_x96(self) -> Tuple[int, int, int]:
        """(pool sqrt price, oracle sqrt price, clamped funding ratio), all Q96."""
        oracle_tick = self.oracle_tick()
        return (
            self._state.sqrt_price_x96,
            get_sqrt_ratio_at_tick(oracle_tick),
            funding_ratio_x96(self._state.tick, oracle_tick, self.config.oracle.tick_cumulative_rate_max),
        )

    def _synced_view(self, owner: str, position_id: int) -> Position:
        position = self._positions.get(position_key(owner, position_id))
        if position is None:
            raise InvalidPosition(f"Position {position_id} of {owner} does not exist")
        if position.liquidated:
            raise PositionLiquidated(f"Position {position_id} was liquidated")
        return self._sync_position(replace(position))

    def health_factor(self, owner: str, position_id: int) -> int:
        """Health of the position with funding accrued to now, at the oracle price (1e18 = boundary)."""
        position = self._synced_view(owner, position_id)
        return position_lib.position_health_factor(
            position, self.maintenance, get_sqrt_ratio_at_tick(position.tick)
        )

    def margin_minimum(self, owner: str, position_id: int) -> int:
        position = self._synced_view(owner, position_id)
        return position_lib.margin_minimum(position, self.maintenance)

    def liquidation_sqrt_price_x96(self, owner: str, position_id: int) -> int:
        position = self._synced_view(owner, position_id)
        return position_lib.liquidation_sqrt_price_x96(position, self.maintenance)

    def rewards_minimum(self) -> int:
        return position_lib.liquidation_rewards(
            self.env.base_fee,
            self.config.liquidation.base_fee_min,
            self.config.liquidation.gas_liquidate,
            self.reward_premium,
        )

    # -- Initialize ---------------------------------------------------------

    def initialize(self, sqrt_price_x96: int) -> None:
        """One-time transition to the initialized state at ``sqrt_price_x96``."""
        with self._transaction():
            if self._state.initialized:
                raise AlreadyInitialized(f"Pool {self.address} already initialized")
            self._set_curve(0, sqrt_price_x96)
            self._state.block_timestamp_last = self.env.timestamp
            self._state.initialized = True
            self._emit("Initialize", sqrtPriceX96=sqrt_price_x96, tick=self._state.tick)
        logger.info("Pool %s initialized: sqrtPriceX96=%d tick=%d", self.address, sqrt_price_x96, self._state.tick)

    # -- Liquidity ----------------------------------------------------------

    def mint(
        self,
        sender: str,
        recipient: str,
        liquidity_delta: int,
        callback: Optional[PaymentCallback],
        data: Any = None,
        deadline: Optional[int] = None,
    ) -> Tuple[int, int, int]:
        """
        Add ``liquidity_delta`` to the curve at the current price.

        Returns:
            (shares, amount0, amount1), amounts rounded up
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            if liquidity_delta <= 0:
                raise InvalidLiquidityDelta("Liquidity delta must be positive")

            total_supply = self.shares.total_supply
            shares = shares_for_liquidity(liquidity_delta, total_supply, self._state.liquidity_total)
            if shares == 0:
                raise InvalidLiquidityDelta(f"Liquidity delta {liquidity_delta} mints no shares")

            amount0, amount1 = to_amounts(liquidity_delta, self._state.sqrt_price_x96, round_up=True)
            self._state.liquidity += liquidity_delta

            if total_supply == 0:
                self.shares.mint(self.address, MINIMUM_LIQUIDITY, caller=self.address)
            self.shares.mint(recipient, shares, caller=self.address)

            self._collect(amount0, amount1, callback, data)
            self._emit(
                "Mint", sender=sender, owner=recipient, liquidityDelta=liquidity_delta,
                shares=shares, amount0=amount0, amount1=amount1,
            )
        logger.debug("Mint %s: %d liquidity -> %d shares for %s", self.address, liquidity_delta, shares, recipient)
        return shares, amount0, amount1

    def burn(
        self,
        sender: str,
        recipient: str,
        shares: int,
        deadline: Optional[int] = None,
    ) -> Tuple[int, int, int]:
        """
        Redeem ``shares`` for free curve liquidity.

        Returns:
            (liquidity_delta, amount0, amount1), amounts rounded down
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            if shares <= 0:
                raise InvalidLiquidityDelta("Shares to burn must be positive")

            liquidity_delta = liquidity_for_shares(
                shares, self.shares.total_supply, self._state.liquidity_total
            )
            if liquidity_delta == 0 or liquidity_delta >= self._state.liquidity:
                raise InvalidLiquidityDelta(
                    f"Liquidity delta {liquidity_delta} must be in (0, {self._state.liquidity})"
                )

            amount0, amount1 = to_amounts(liquidity_delta, self._state.sqrt_price_x96)
            self.shares.burn(sender, shares, caller=self.address)
            self._state.liquidity -= liquidity_delta

            self._pay(self.token0, recipient, amount0)
            self._pay(self.token1, recipient, amount1)
            self._emit(
                "Burn", owner=sender, recipient=recipient, liquidityDelta=liquidity_delta,
                shares=shares, amount0=amount0, amount1=amount1,
            )
        logger.debug("Burn %s: %d shares -> %d liquidity for %s", self.address, shares, liquidity_delta, recipient)
        return liquidity_delta, amount0, amount1

    # -- Swap ---------------------------------------------------------------

    def swap(
        self,
        sender: str,
        recipient: str,
        zero_for_one: bool,
        amount_specified: int,
        sqrt_price_limit_x96: int,
        callback: Optional[PaymentCallback],
        data: Any = None,
        deadline: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Trade against the curve.

        ``amount_specified > 0`` is exact input, ``< 0`` exact output. The swap
        stops at ``sqrt_price_limit_x96``; the unfilled remainder stays with
        the caller.

        Returns:
            (amount0, amount1), positive = paid into the pool
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            if amount_specified == 0:
                return 0, 0

            liquidity = self._state.liquidity
            price = self._state.sqrt_price_x96
            if liquidity == 0:
                raise InsufficientLiquidity(f"Pool {self.address} has no liquidity")
            self._check_sqrt_price_limit(zero_for_one, sqrt_price_limit_x96)

            exact_input = amount_specified > 0
            if exact_input:
                fees = swap_fees(amount_specified, self.fee, fee_included=True)
                price_next = next_sqrt_price_from_amount(
                    liquidity, price, zero_for_one, amount_specified - fees
                )
            else:
                price_next = next_sqrt_price_from_amount(liquidity, price, zero_for_one, amount_specified)

            truncated = price_next < sqrt_price_limit_x96 if zero_for_one else price_next > sqrt_price_limit_x96
            if truncated:
                price_next = sqrt_price_limit_x96

            amount0, amount1 = swap_amounts(liquidity, price, price_next)
            amount_in, amount_out = (amount0, -amount1) if zero_for_one else (amount1, -amount0)

            if exact_input and not truncated:
                amount_in = amount_specified - fees
            else:
                fees = swap_fees(amount_in, self.fee)
            if not exact_input and not truncated:
                amount_out = min(amount_out, -amount_specified)
            if amount_in <= 0 or amount_out <= 0:
                raise SwapNoProgress(f"Swap of {amount_specified} moves no tokens")

            if zero_for_one:
                amount0, amount1 = amount_in + fees, -amount_out
            else:
                amount0, amount1 = -amount_out, amount_in + fees

            self._set_curve(liquidity, price_next)
            self._rebalance(fees if zero_for_one else 0, 0 if zero_for_one else fees)

            self._pay(self.token1 if zero_for_one else self.token0, recipient, amount_out)
            self._collect(amount0, amount1, callback, data)
            self._emit(
                "Swap", sender=sender, recipient=recipient, amount0=amount0, amount1=amount1,
                sqrtPriceX96=self._state.sqrt_price_x96, liquidity=self._state.liquidity,
                tick=self._state.tick,
            )
        logger.debug(
            "Swap %s: zero_for_one=%s amount0=%d amount1=%d", self.address, zero_for_one, amount0, amount1
        )
        return amount0, amount1

    # -- Leveraged positions -------------------------------------------------

    def open(
        self,
        sender: str,
        recipient: str,
        zero_for_one: bool,
        size: int,
        size_min: int,
        debt_max: int,
        amount_in_max: int,
        sqrt_price_limit_x96: int,
        margin: int,
        value: int,
        callback: Optional[PaymentCallback],
        data: Any = None,
        deadline: Optional[int] = None,
    ) -> Tuple[int, int, int, int, int]:
        """
        Open a leveraged position of ``size`` for ``recipient``.

        ``sender`` pays margin plus fees through ``callback`` and posts ``value``
        of the native currency as liquidation rewards.

        Returns:
            (id, size, debt, amount0, amount1)
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()

            liquidity = self._state.liquidity
            price = self._state.sqrt_price_x96
            if liquidity == 0:
                raise InsufficientLiquidity(f"Pool {self.address} has no liquidity")
            self._check_sqrt_price_limit(zero_for_one, sqrt_price_limit_x96)

            liquidity_delta = position_lib.liquidity_for_size(
                liquidity, price, self.maintenance, zero_for_one, size
            )
            if liquidity_delta <= 0 or liquidity_delta + MINIMUM_LIQUIDITY >= liquidity:
                raise InvalidLiquidityDelta(
                    f"Liquidity delta {liquidity_delta} not available from {liquidity}"
                )

            price_next = sqrt_price_x96_next_open(
                liquidity, price, liquidity_delta, zero_for_one, self.maintenance
            )
            if (zero_for_one and price_next < sqrt_price_limit_x96) or (
                not zero_for_one and price_next > sqrt_price_limit_x96
            ):
                raise SqrtPriceLimitExceeded(
                    f"Open moves price to {price_next}, past limit {sqrt_price_limit_x96}"
                )

            oracle_tick = self.oracle_tick()
            position = position_lib.assemble(
                liquidity,
                price,
                price_next,
                liquidity_delta,
                zero_for_one,
                oracle_tick,
                self.env.timestamp,
                oracle_tick_cumulative(self.oracle) - self._state.tick_cumulative,
                margin=margin,
                rewards=value,
            )

            if position.size < size_min:
                raise SizeLessThanMin(f"Size {position.size} < minimum {size_min}")
            if position.debt > debt_max:
                raise DebtGreaterThanMax(f"Debt {position.debt} > maximum {debt_max}")

            margin_min = position_lib.margin_minimum(
                position, self.maintenance, get_sqrt_ratio_at_tick(oracle_tick)
            )
            if margin < margin_min:
                raise MarginLessThanMin(f"Margin {margin} < minimum {margin_min}")

            rewards_min = self.rewards_minimum()
            if value < rewards_min:
                raise RewardsLessThanMin(f"Rewards {value} < minimum {rewards_min}")

            fees = swap_fees(position.size, self.fee)
            amount_in = margin + fees
            if amount_in > amount_in_max:
                raise AmountInGreaterThanMax(f"Amount in {amount_in} > maximum {amount_in_max}")

            self._state.liquidity_locked += liquidity_delta
            self._set_curve(liquidity - liquidity_delta, price_next)
            self._rebalance(0 if zero_for_one else fees, fees if zero_for_one else 0)

            position_id = self._state.total_positions
            self._state.total_positions += 1
            position.owner = to_checksum_address(recipient)
            position.id = position_id
            self._positions[position_key(position.owner, position_id)] = position
            self._owners[position_id] = position.owner

            self.native.transfer(sender, self.address, value)
            amount0, amount1 = (0, amount_in) if zero_for_one else (amount_in, 0)
            self._collect(amount0, amount1, callback, data)
            self._emit(
                "Open", sender=sender, owner=position.owner, id=position_id,
                liquidityDelta=liquidity_delta, sqrtPriceX96=self._state.sqrt_price_x96,
                liquidity=self._state.liquidity, margin=margin,
            )
        logger.info(
            "Open %s #%d: zero_for_one=%s size=%d debt=%d margin=%d",
            self.address, position_id, zero_for_one, position.size, position.debt, margin,
        )
        return position_id, position.size, position.debt, amount0, amount1

    def lock(
        self,
        sender: str,
        position_id: int,
        margin_in: int,
        callback: Optional[PaymentCallback],
        data: Any = None,
        deadline: Optional[int] = None,
    ) -> int:
        """
        Top up a position's margin. Funding is synced first.

        Returns:
            margin after the top-up
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            key, position = self._load_position(sender, position_id)
            if margin_in <= 0:
                raise InvalidMarginIn(f"Margin in must be positive (got {margin_in})")

            position = self._sync_position(position)
            position.margin += margin_in
            margin_min = position_lib.margin_minimum(position, self.maintenance)
            if position.margin < margin_min:
                raise MarginLessThanMin(f"Margin {position.margin} < minimum {margin_min}")
            self._positions[key] = position

            amount0, amount1 = (0, margin_in) if position.zero_for_one else (margin_in, 0)
            self._collect(amount0, amount1, callback, data)
            self._emit(
                "Lock", owner=position.owner, id=position_id, marginAfter=position.margin,
            )
        logger.info("Lock %s #%d: margin -> %d", self.address, position_id, position.margin)
        return position.margin

    def settle(
        self,
        sender: str,
        recipient: str,
        position_id: int,
        callback: Optional[PaymentCallback],
        data: Any = None,
        deadline: Optional[int] = None,
    ) -> Tuple[int, int, int]:
        """
        Close a safe position: repay debt, receive size + margin and the rewards deposit.

        Returns:
            (amount0, amount1, rewards), positive = paid into the pool
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            key, position = self._load_position(sender, position_id)
            position = self._sync_position(position)

            oracle_sqrt_price_x96 = get_sqrt_ratio_at_tick(position.tick)
            if not position_lib.safe(position, self.maintenance, oracle_sqrt_price_x96):
                raise PositionNotSafe(f"Position {position_id} is not safe to settle")

            amount0, amount1 = position_lib.amounts_on_settle(position)
            unlocked0, unlocked1 = position_lib.amounts_unlocked_on_settle(position)
            self._rebalance(unlocked0, unlocked1)
            self._state.liquidity_locked -= position.liquidity_locked
            del self._positions[key]

            if position.zero_for_one:
                self._pay(self.token1, recipient, -amount1)
            else:
                self._pay(self.token0, recipient, -amount0)
            self._pay(self.native, recipient, position.rewards)
            self._collect(amount0, amount1, callback, data)
            self._emit(
                "Settle", owner=position.owner, id=position_id, recipient=recipient,
                sqrtPriceX96=self._state.sqrt_price_x96, liquidity=self._state.liquidity,
                amount0=amount0, amount1=amount1, rewards=position.rewards,
            )
        logger.info(
            "Settle %s #%d: amount0=%d amount1=%d", self.address, position_id, amount0, amount1
        )
        return amount0, amount1, position.rewards

    def liquidate(
        self,
        sender: str,
        recipient: str,
        owner: str,
        position_id: int,
        deadline: Optional[int] = None,
    ) -> int:
        """
        Force-close an unsafe position. Collateral is seized by the pool and the
        rewards deposit goes to ``recipient``.

        Returns:
            rewards paid
        """
        with self._transaction(deadline):
            self._require_initialized()
            self._state_synced()
            key = position_key(owner, position_id)
            position = self._positions.get(key)
            if position is None:
                raise InvalidPosition(f"Position {position_id} of {owner} does not exist")
            if position.liquidated:
                raise PositionLiquidated(f"Position {position_id} was liquidated")

            position = self._sync_position(position)
            oracle_sqrt_price_x96 = get_sqrt_ratio_at_tick(position.tick)
            if position_lib.safe(position, self.maintenance, oracle_sqrt_price_x96):
                raise PositionSafe(f"Position {position_id} is safe")

            unlocked0, unlocked1 = position_lib.amounts_unlocked_on_liquidate(position)
            self._rebalance(unlocked0, unlocked1)
            self._state.liquidity_locked -= position.liquidity_locked
            self._positions[key] = position_lib.liquidate(position)

            self._pay(self.native, recipient, position.rewards)
            self._emit(
                "Liquidate", owner=position.owner, id=position_id, sender=sender,
                recipient=recipient, sqrtPriceX96=self._state.sqrt_price_x96,
                liquidity=self._state.liquidity, rewards=position.rewards,
            )
        logger.warning(
            "Liquidated %s #%d of %s: rewards=%d to %s",
            self.address, position_id, position.owner, position.rewards, recipient,
        )
        return position.rewards
