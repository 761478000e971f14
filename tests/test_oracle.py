"""
Tests for the reference-feed oracle

Covers:
  - ObservationFeed observe: extrapolation, interpolation, too-old targets
  - Cardinality growth and ring trimming
  - FeedRegistry lookup
  - average_tick window degradation and rounding toward -inf
  - funding_ratio_x96 clamping
  - check_observation_cardinality / initialize_oracle_if_necessary
"""

import pytest

from conftest import FEED_ADDR, TOKEN0_ADDR, TOKEN1_ADDR

from marginpool.constants import Q96, TICK_CUMULATIVE_RATE_MAX
from marginpool.core.environment import BlockEnvironment
from marginpool.core.oracle import (
    FeedRegistry,
    ObservationFeed,
    average_tick,
    check_observation_cardinality,
    funding_ratio_x96,
    initialize_oracle_if_necessary,
    oldest_observation_seconds_ago,
    oracle_sqrt_price_x96,
    oracle_tick_cumulative,
)
from marginpool.core.tick_math import get_sqrt_ratio_at_tick, price_x192_at_tick
from marginpool.exceptions import (
    InvalidObservationCardinality,
    InvalidOracle,
    OracleObservationTooOld,
)

START = 1684675403


def make_feed(env, tick=0, cardinality=100):
    return ObservationFeed(
        env, FEED_ADDR, TOKEN0_ADDR, TOKEN1_ADDR, 500,
        get_sqrt_ratio_at_tick(tick), observation_cardinality=cardinality,
    )


@pytest.fixture
def clock():
    return BlockEnvironment(timestamp=START)


class TestObservationFeed:
    """ObservationFeed reads and writes."""

    def test_initial_state(self, clock):
        feed = make_feed(clock, tick=100)
        slot0 = feed.slot0()
        assert slot0.tick == 100
        assert slot0.observation_index == 0
        assert slot0.observation_cardinality == 100
        assert feed.observations(0).block_timestamp == START
        assert not feed.observations(1).initialized

    def test_extrapolates_at_current_tick(self, clock):
        feed = make_feed(clock, tick=100)
        clock.advance(60)
        assert oracle_tick_cumulative(feed) == 6000

    def test_interpolates(self, clock):
        feed = make_feed(clock, tick=100)
        clock.advance(100)
        feed.set_sqrt_price_x96(get_sqrt_ratio_at_tick(-50))
        clock.advance(100)
        cumulatives, _ = feed.observe([150, 100, 50, 0])
        assert cumulatives == [5000, 10000, 7500, 5000]

    def test_too_old(self, clock):
        feed = make_feed(clock)
        clock.advance(10)
        with pytest.raises(OracleObservationTooOld):
            feed.observe([11])

    def test_push_requires_increasing_timestamps(self, clock):
        feed = make_feed(clock)
        with pytest.raises(ValueError):
            feed.push_observation(START, 0)

    def test_ring_trims_oldest(self, clock):
        feed = make_feed(clock, cardinality=3)
        for i in range(1, 5):
            feed.push_observation(START + i, i)
        assert feed.slot0().observation_index == 2
        assert feed.observations(0).block_timestamp == START + 2

    def test_cardinality_growth_applies_on_write(self, clock):
        feed = make_feed(clock, cardinality=1)
        feed.increase_observation_cardinality_next(5)
        assert feed.slot0().observation_cardinality == 1
        assert feed.slot0().observation_cardinality_next == 5
        feed.push_observation(START + 1, 0)
        assert feed.slot0().observation_cardinality == 5

    def test_cardinality_cap(self, clock):
        feed = make_feed(clock)
        with pytest.raises(ValueError):
            feed.increase_observation_cardinality_next(65536)

    def test_set_slot0_writes_nothing(self, clock):
        feed = make_feed(clock)
        clock.advance(10)
        feed.set_slot0(get_sqrt_ratio_at_tick(7))
        assert feed.slot0().tick == 7
        assert feed.slot0().observation_index == 0


class TestFeedRegistry:
    """FeedRegistry."""

    def test_lookup_is_order_insensitive(self, clock):
        registry = FeedRegistry()
        feed = make_feed(clock)
        registry.register(feed)
        assert registry.get_feed(TOKEN1_ADDR, TOKEN0_ADDR, 500) is feed
        assert registry.find_feed(TOKEN0_ADDR, TOKEN1_ADDR, 3000) is None

    def test_missing_feed(self):
        with pytest.raises(InvalidOracle):
            FeedRegistry().get_feed(TOKEN0_ADDR, TOKEN1_ADDR, 500)


class TestAverageTick:
    """TWAP sampling."""

    def test_zero_window_uses_slot0(self, clock):
        feed = make_feed(clock, tick=42)
        assert oldest_observation_seconds_ago(feed, clock.timestamp) == 0
        assert average_tick(feed, 43200, clock.timestamp) == 42

    def test_mean_over_window(self, clock):
        feed = make_feed(clock, tick=100)
        clock.advance(43200)
        feed.set_sqrt_price_x96(get_sqrt_ratio_at_tick(200))
        clock.advance(21600)
        assert average_tick(feed, 43200, clock.timestamp) == 150

    def test_window_degrades_to_oldest(self, clock):
        feed = make_feed(clock, tick=100)
        clock.advance(600)
        feed.set_sqrt_price_x96(get_sqrt_ratio_at_tick(400))
        clock.advance(200)
        # only 800s of history: (100*600 + 400*200) / 800
        assert oldest_observation_seconds_ago(feed, clock.timestamp) == 800
        assert average_tick(feed, 43200, clock.timestamp) == 175

    def test_rounds_toward_negative_infinity(self, clock):
        feed = make_feed(clock, tick=-1)
        clock.advance(100)
        feed.set_sqrt_price_x96(get_sqrt_ratio_at_tick(-2))
        clock.advance(100)
        assert average_tick(feed, 200, clock.timestamp) == -2

    def test_mainnet_scale_observations(self):
        env = BlockEnvironment(timestamp=START - 43200)
        feed = ObservationFeed(
            env, FEED_ADDR, TOKEN0_ADDR, TOKEN1_ADDR, 500,
            1815798575707834854825150601403158, observation_cardinality=7200,
        )
        feed.push_observation(1684675403, 13002641612327)
        feed.push_observation(1684718603, 13011354231527)
        feed.push_observation(1684761803, 13020066850727)
        env.timestamp = 1684761803
        assert average_tick(feed, 43200, env.timestamp) == 201681

    def test_oracle_sqrt_price(self, clock):
        feed = make_feed(clock, tick=300)
        assert oracle_sqrt_price_x96(feed, 43200, clock.timestamp) == get_sqrt_ratio_at_tick(300)


class TestFundingRatio:
    """funding_ratio_x96."""

    def test_no_divergence(self):
        assert funding_ratio_x96(1234, 1234, TICK_CUMULATIVE_RATE_MAX) == Q96

    def test_within_bounds(self):
        assert funding_ratio_x96(10, 0, TICK_CUMULATIVE_RATE_MAX) == price_x192_at_tick(10) >> 96

    @pytest.mark.parametrize("gap", [-100000, -921, 921, 100000])
    def test_clamped(self, gap):
        ratio = funding_ratio_x96(gap, 0, TICK_CUMULATIVE_RATE_MAX)
        assert price_x192_at_tick(-TICK_CUMULATIVE_RATE_MAX) >> 96 <= ratio
        assert ratio <= price_x192_at_tick(TICK_CUMULATIVE_RATE_MAX) >> 96
        bound = TICK_CUMULATIVE_RATE_MAX if gap > 0 else -TICK_CUMULATIVE_RATE_MAX
        assert ratio == price_x192_at_tick(bound) >> 96


class TestCardinality:
    """Observation cardinality checks."""

    def test_check(self, clock):
        feed = make_feed(clock, cardinality=10)
        check_observation_cardinality(feed, 10)
        with pytest.raises(InvalidObservationCardinality):
            check_observation_cardinality(feed, 11)

    def test_initialize_if_necessary(self, clock):
        feed = make_feed(clock, cardinality=1)
        assert initialize_oracle_if_necessary(feed, 7200) is True
        assert feed.slot0().observation_cardinality_next == 7200
        assert initialize_oracle_if_necessary(feed, 7200) is False
        check_observation_cardinality(feed, 7200)
