"""
Reference-feed oracle (Uniswap V3 observation model)

The pool prices funding and liquidation against an external spot market
rather than its own curve:
  - ReferenceFeed protocol: observe / slot0 / observations / cardinality growth
  - ObservationFeed: deterministic in-memory feed (ring of cumulative ticks)
  - FeedRegistry: (token0, token1, fee) -> feed lookup
  - Arithmetic-mean TWAP tick over a lookback window
  - Funding ratio: 1.0001^(pool_tick - oracle_tick), clamped

Security features:
  - Window degrades to the oldest available observation instead of failing
  - Explicit error when the feed keeps fewer observations than required
  - Explicit error when no feed exists for the pair / fee tier
  - Funding ratio clamped to +-max_tick_delta per period
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

from eth_utils import to_checksum_address

from ..exceptions import (
    InvalidObservationCardinality,
    InvalidOracle,
    OracleObservationTooOld,
)
from ..logger import get_logger
from .environment import BlockEnvironment
from .tick_math import get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio, price_x192_at_tick

logger = get_logger(__name__)

MAX_OBSERVATION_CARDINALITY = 65535


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

class Slot0(NamedTuple):
    sqrt_price_x96: int
    tick: int
    observation_index: int
    observation_cardinality: int
    observation_cardinality_next: int
    fee_protocol: int
    unlocked: bool


@dataclass
class Observation:
    """Cumulative tick snapshot recorded at a block timestamp."""
    block_timestamp: int
    tick_cumulative: int
    seconds_per_liquidity_cumulative_x128: int = 0
    initialized: bool = True


class ReferenceFeed(Protocol):
    """Read interface the pool needs from an external spot market."""

    address: str
    token0: str
    token1: str
    fee: int

    def observe(self, seconds_agos: Sequence[int]) -> Tuple[List[int], List[int]]:
        ...

    def slot0(self) -> Slot0:
        ...

    def observations(self, index: int) -> Observation:
        ...

    def increase_observation_cardinality_next(self, observation_cardinality_next: int) -> None:
        ...


def _div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


# ---------------------------------------------------------------------------
# In-memory feed
# ---------------------------------------------------------------------------

class ObservationFeed:
    """
    Deterministic reference feed.

    Keeps observations oldest-first, at most ``observation_cardinality`` of
    them. Cardinality growth requested through
    ``increase_observation_cardinality_next`` takes effect on the next write,
    as it does on-chain.
    """

    def __init__(
        self,
        env: BlockEnvironment,
        address: str,
        token0: str,
        token1: str,
        fee: int,
        sqrt_price_x96: int,
        observation_cardinality: int = 1,
    ):
        self.env = env
        self.address = to_checksum_address(address)
        self.token0 = to_checksum_address(token0)
        self.token1 = to_checksum_address(token1)
        self.fee = fee
        self._sqrt_price_x96 = sqrt_price_x96
        self._tick = get_tick_at_sqrt_ratio(sqrt_price_x96)
        self._cardinality = max(1, observation_cardinality)
        self._cardinality_next = self._cardinality
        self._observations: List[Observation] = [Observation(env.timestamp, 0, 0, True)]

    # -- Reads --------------------------------------------------------------

    def slot0(self) -> Slot0:
        return Slot0(
            sqrt_price_x96=self._sqrt_price_x96,
            tick=self._tick,
            observation_index=len(self._observations) - 1,
            observation_cardinality=self._cardinality,
            observation_cardinality_next=self._cardinality_next,
            fee_protocol=0,
            unlocked=True,
        )

    def observations(self, index: int) -> Observation:
        if 0 <= index < len(self._observations):
            return self._observations[index]
        return Observation(0, 0, 0, False)

    def observe(self, seconds_agos: Sequence[int]) -> Tuple[List[int], List[int]]:
        """Cumulative ticks (and seconds per liquidity) ``seconds_ago`` before now."""
        tick_cumulatives: List[int] = []
        seconds_per_liquidity: List[int] = []
        for seconds_ago in seconds_agos:
            obs = self._observe_single(self.env.timestamp - seconds_ago)
            tick_cumulatives.append(obs.tick_cumulative)
            seconds_per_liquidity.append(obs.seconds_per_liquidity_cumulative_x128)
        return tick_cumulatives, seconds_per_liquidity

    def _observe_single(self, target: int) -> Observation:
        last = self._observations[-1]
        if target >= last.block_timestamp:
            # Extrapolate past the newest observation at the current tick
            dt = target - last.block_timestamp
            return Observation(
                target,
                last.tick_cumulative + self._tick * dt,
                last.seconds_per_liquidity_cumulative_x128,
            )

        first = self._observations[0]
        if target < first.block_timestamp:
            raise OracleObservationTooOld(
                f"Target {target} predates oldest observation {first.block_timestamp}"
            )

        # Binary search for the observation at or just before target
        lo, hi = 0, len(self._observations) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._observations[mid].block_timestamp <= target:
                lo = mid
            else:
                hi = mid - 1

        before = self._observations[lo]
        if before.block_timestamp == target:
            return before
        after = self._observations[lo + 1]

        time_delta = after.block_timestamp - before.block_timestamp
        target_delta = target - before.block_timestamp
        tick_cumulative = before.tick_cumulative + _div_trunc(
            after.tick_cumulative - before.tick_cumulative, time_delta
        ) * target_delta
        seconds_per_liquidity = before.seconds_per_liquidity_cumulative_x128 + (
            (after.seconds_per_liquidity_cumulative_x128 - before.seconds_per_liquidity_cumulative_x128)
            * target_delta
        ) // time_delta
        return Observation(target, tick_cumulative, seconds_per_liquidity)

    # -- Writes -------------------------------------------------------------

    def increase_observation_cardinality_next(self, observation_cardinality_next: int) -> None:
        if observation_cardinality_next > MAX_OBSERVATION_CARDINALITY:
            raise ValueError(f"Cardinality {observation_cardinality_next} exceeds {MAX_OBSERVATION_CARDINALITY}")
        if observation_cardinality_next > self._cardinality_next:
            logger.debug(
                "Feed %s cardinality next %d -> %d",
                self.address, self._cardinality_next, observation_cardinality_next,
            )
            self._cardinality_next = observation_cardinality_next

    def push_observation(
        self,
        block_timestamp: int,
        tick_cumulative: int,
        seconds_per_liquidity_cumulative_x128: int = 0,
        initialized: bool = True,
    ) -> Observation:
        """Append an observation recorded elsewhere (e.g. replayed from chain data)."""
        if block_timestamp <= self._observations[-1].block_timestamp:
            raise ValueError("Observation timestamps must be strictly increasing")
        obs = Observation(
            block_timestamp, tick_cumulative, seconds_per_liquidity_cumulative_x128, initialized
        )
        self._write(obs)
        return obs

    def set_sqrt_price_x96(self, sqrt_price_x96: int) -> None:
        """
        Move the spot price, as a swap on the reference market would.

        Writes an observation for the elapsed time at the old tick first.
        """
        last = self._observations[-1]
        now = self.env.timestamp
        if now > last.block_timestamp:
            self._write(Observation(
                now,
                last.tick_cumulative + self._tick * (now - last.block_timestamp),
                last.seconds_per_liquidity_cumulative_x128,
            ))
        self._sqrt_price_x96 = sqrt_price_x96
        self._tick = get_tick_at_sqrt_ratio(sqrt_price_x96)

    def set_slot0(self, sqrt_price_x96: int, tick: Optional[int] = None) -> None:
        """Overwrite the spot price and tick without writing an observation."""
        self._sqrt_price_x96 = sqrt_price_x96
        self._tick = get_tick_at_sqrt_ratio(sqrt_price_x96) if tick is None else tick

    def _write(self, obs: Observation) -> None:
        if self._cardinality_next > self._cardinality:
            self._cardinality = self._cardinality_next
        self._observations.append(obs)
        if len(self._observations) > self._cardinality:
            del self._observations[: len(self._observations) - self._cardinality]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class FeedRegistry:
    """Reference feeds by (token0, token1, fee); tokens are sorted on lookup."""

    def __init__(self) -> None:
        self._feeds: Dict[Tuple[str, str, int], ReferenceFeed] = {}

    @staticmethod
    def _key(token_a: str, token_b: str, fee: int) -> Tuple[str, str, int]:
        a, b = to_checksum_address(token_a), to_checksum_address(token_b)
        if a.lower() > b.lower():
            a, b = b, a
        return a, b, fee

    def register(self, feed: ReferenceFeed) -> None:
        self._feeds[self._key(feed.token0, feed.token1, feed.fee)] = feed
        logger.debug("Registered feed %s for %s/%s fee=%d", feed.address, feed.token0, feed.token1, feed.fee)

    def find_feed(self, token_a: str, token_b: str, fee: int) -> Optional[ReferenceFeed]:
        return self._feeds.get(self._key(token_a, token_b, fee))

    def get_feed(self, token_a: str, token_b: str, fee: int) -> ReferenceFeed:
        feed = self.find_feed(token_a, token_b, fee)
        if feed is None:
            raise InvalidOracle(f"No reference feed for {token_a}/{token_b} fee={fee}")
        return feed


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def oldest_observation_seconds_ago(feed: ReferenceFeed, block_timestamp: int) -> int:
    """Age of the oldest observation the feed still holds."""
    slot0 = feed.slot0()
    if slot0.observation_cardinality == 0:
        raise InvalidObservationCardinality("Feed has no observations")
    oldest_index = (slot0.observation_index + 1) % slot0.observation_cardinality
    oldest = feed.observations(oldest_index)
    if not oldest.initialized:
        oldest = feed.observations(0)
    return block_timestamp - oldest.block_timestamp


def average_tick(feed: ReferenceFeed, seconds_ago: int, block_timestamp: int) -> int:
    """
    Arithmetic mean tick over the last ``seconds_ago`` seconds.

    Rounds toward negative infinity. When the feed holds less history than
    requested the window shrinks to what is available; an empty window
    returns the current slot0 tick.
    """
    window = min(seconds_ago, oldest_observation_seconds_ago(feed, block_timestamp))
    if window <= 0:
        return feed.slot0().tick

    tick_cumulatives, _ = feed.observe([window, 0])
    delta = tick_cumulatives[1] - tick_cumulatives[0]
    tick = _div_trunc(delta, window)
    if delta < 0 and delta % window != 0:
        tick -= 1
    return tick


def oracle_sqrt_price_x96(feed: ReferenceFeed, seconds_ago: int, block_timestamp: int) -> int:
    """TWAP price as a Q64.96 square root."""
    return get_sqrt_ratio_at_tick(average_tick(feed, seconds_ago, block_timestamp))


def oracle_tick_cumulative(feed: ReferenceFeed) -> int:
    """Feed tick cumulative at the current block."""
    tick_cumulatives, _ = feed.observe([0])
    return tick_cumulatives[0]


def funding_ratio_x96(pool_tick: int, oracle_tick: int, max_tick_delta: int) -> int:
    """1.0001^(pool_tick - oracle_tick) in Q96, tick gap clamped to +-max_tick_delta."""
    delta = pool_tick - oracle_tick
    if delta > max_tick_delta:
        delta = max_tick_delta
    elif delta < -max_tick_delta:
        delta = -max_tick_delta
    return price_x192_at_tick(delta) >> 96


# ---------------------------------------------------------------------------
# Cardinality
# ---------------------------------------------------------------------------

def check_observation_cardinality(feed: ReferenceFeed, minimum: int) -> None:
    slot0 = feed.slot0()
    if slot0.observation_cardinality_next < minimum:
        raise InvalidObservationCardinality(
            f"Feed {feed.address} cardinality next {slot0.observation_cardinality_next} < {minimum}"
        )


def initialize_oracle_if_necessary(feed: ReferenceFeed, minimum: int) -> bool:
    """Grow the feed's observation buffer to ``minimum``. Returns True if it grew."""
    slot0 = feed.slot0()
    if slot0.observation_cardinality_next >= minimum:
        return False
    feed.increase_observation_cardinality_next(minimum)
    logger.info("Feed %s observation cardinality next -> %d", feed.address, minimum)
    return True
