"""
Shared fixtures for the marginpool test suite.

A pool priced at 1:1 (sqrt price = 2^96) backed by a reference feed at the
same price, with two funded traders and a liquidator.
"""

import pytest

from marginpool.config import MarginPoolConfig
from marginpool.constants import OBSERVATION_CARDINALITY_MINIMUM, Q96
from marginpool.core.environment import BlockEnvironment
from marginpool.core.factory import PoolFactory
from marginpool.core.oracle import FeedRegistry, ObservationFeed
from marginpool.tokens import Token

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
LIQUIDATOR = "0x3333333333333333333333333333333333333333"
TOKEN0_ADDR = "0x4444444444444444444444444444444444444444"
TOKEN1_ADDR = "0x5555555555555555555555555555555555555555"
NATIVE_ADDR = "0x6666666666666666666666666666666666666666"
FEED_ADDR = "0x7777777777777777777777777777777777777777"

ORACLE_FEE = 3000
MAINTENANCE = 250_000
LIQUIDITY = 10**18
FUNDS = 10**30
NATIVE_FUNDS = 10**21


def pay_from(pool, payer):
    """Payment callback that transfers whatever the pool asks for from ``payer``."""
    def callback(amount0, amount1, data):
        if amount0 > 0:
            pool.token0.transfer(payer, pool.address, amount0)
        if amount1 > 0:
            pool.token1.transfer(payer, pool.address, amount1)
    return callback


def pay_nothing(amount0, amount1, data):
    pass


@pytest.fixture
def env() -> BlockEnvironment:
    return BlockEnvironment()


@pytest.fixture
def token0() -> Token:
    return Token(TOKEN0_ADDR, "Token Zero", "TK0")


@pytest.fixture
def token1() -> Token:
    return Token(TOKEN1_ADDR, "Token One", "TK1")


@pytest.fixture
def native() -> Token:
    return Token(NATIVE_ADDR, "Ether", "ETH")


@pytest.fixture
def feed(env) -> ObservationFeed:
    return ObservationFeed(
        env,
        FEED_ADDR,
        TOKEN0_ADDR,
        TOKEN1_ADDR,
        ORACLE_FEE,
        Q96,
        observation_cardinality=OBSERVATION_CARDINALITY_MINIMUM,
    )


@pytest.fixture
def registry(feed) -> FeedRegistry:
    reg = FeedRegistry()
    reg.register(feed)
    return reg


@pytest.fixture
def config() -> MarginPoolConfig:
    return MarginPoolConfig()


@pytest.fixture
def factory(env, registry, native, config) -> PoolFactory:
    return PoolFactory(env, registry, native, config)


@pytest.fixture
def funded(token0, token1, native):
    for holder in (ALICE, BOB, LIQUIDATOR):
        token0.mint(holder, FUNDS)
        token1.mint(holder, FUNDS)
        native.mint(holder, NATIVE_FUNDS)


@pytest.fixture
def uninitialized_pool(factory, token0, token1):
    return factory.create_pool(ALICE, token0, token1, MAINTENANCE, ORACLE_FEE)


@pytest.fixture
def empty_pool(uninitialized_pool, funded):
    """Initialized at 1:1 with no liquidity."""
    uninitialized_pool.initialize(Q96)
    return uninitialized_pool


@pytest.fixture
def pool(empty_pool):
    """Initialized at 1:1 with LIQUIDITY deposited by ALICE."""
    empty_pool.mint(ALICE, ALICE, LIQUIDITY, pay_from(empty_pool, ALICE))
    return empty_pool
