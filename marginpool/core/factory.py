"""
Marginpool Factory

Permissionless pool deployment and lookup:
  - Canonical token ordering by address
  - Maintenance tier and reference-feed validation
  - Deterministic CREATE2-style pool addresses
  - Lookup by (token0, token1, maintenance, oracle)
"""

from __future__ import annotations

from typing import Dict, List, NamedTuple, Optional

from eth_utils import keccak, to_canonical_address, to_checksum_address

from ..config import MarginPoolConfig
from ..exceptions import InvalidMaintenance, InvalidTokens, PoolExists
from ..logger import get_logger
from ..tokens import Token
from .environment import BlockEnvironment
from .oracle import (
    FeedRegistry,
    ReferenceFeed,
    check_observation_cardinality,
    initialize_oracle_if_necessary as grow_observation_cardinality,
)
from .pool import MarginPool

logger = get_logger(__name__)

POOL_INIT_CODE_TAG = b"marginpool.MarginPool.v1"


class PoolKey(NamedTuple):
    token0: str
    token1: str
    maintenance: int
    oracle: str


def _word(address: str) -> bytes:
    """Address left-padded to a 32-byte ABI word."""
    return bytes(12) + to_canonical_address(address)


def compute_pool_address(factory: str, token0: str, token1: str, maintenance: int, oracle: str) -> str:
    """
    CREATE2 address of a pool.

    Address = keccak256(0xff + factory + keccak256(abi(key)) + keccak256(init_tag))[-20:]
    """
    salt = keccak(
        _word(token0) + _word(token1) + maintenance.to_bytes(32, "big") + _word(oracle)
    )
    data = b"\xff" + to_canonical_address(factory) + salt + keccak(POOL_INIT_CODE_TAG)
    return to_checksum_address("0x" + keccak(data)[-20:].hex())


class PoolFactory:
    """
    Deploys and indexes pools.

    All pools share the factory's block environment, native rewards token and
    configuration.
    """

    def __init__(
        self,
        env: BlockEnvironment,
        registry: FeedRegistry,
        native: Token,
        config: Optional[MarginPoolConfig] = None,
        address: str = "0x000000000000000000000000000000000000fAc7",
    ) -> None:
        self.env = env
        self.registry = registry
        self.native = native
        self.config = config or MarginPoolConfig()
        self.config.validate()
        self.address = to_checksum_address(address)

        self._pools: Dict[PoolKey, MarginPool] = {}
        self._by_address: Dict[str, MarginPool] = {}

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    @staticmethod
    def _key(token0: str, token1: str, maintenance: int, oracle: str) -> PoolKey:
        return PoolKey(
            to_checksum_address(token0),
            to_checksum_address(token1),
            maintenance,
            to_checksum_address(oracle),
        )

    def compute_pool_address(self, token0: str, token1: str, maintenance: int, oracle: str) -> str:
        return compute_pool_address(self.address, token0, token1, maintenance, oracle)

    def initialize_oracle_if_necessary(self, token_a: str, token_b: str, oracle_fee: int) -> ReferenceFeed:
        """
        Grow the pair's reference feed to the configured observation
        cardinality so that ``create_pool`` accepts it.

        Raises InvalidOracle when the registry has no feed for the pair at
        ``oracle_fee``.
        """
        oracle = self.registry.get_feed(token_a, token_b, oracle_fee)
        grow_observation_cardinality(oracle, self.config.oracle.observation_cardinality_minimum)
        return oracle

    def create_pool(
        self,
        sender: str,
        token_a: Token,
        token_b: Token,
        maintenance: int,
        oracle_fee: int,
    ) -> MarginPool:
        """
        Create a pool for the token pair at a maintenance tier, priced against
        the registry's feed for ``oracle_fee``.
        """
        if token_a.address == token_b.address:
            raise InvalidTokens(f"Identical tokens: {token_a.address}")
        # Canonical ordering
        token0, token1 = (token_a, token_b) if token_a.address.lower() < token_b.address.lower() else (token_b, token_a)

        if maintenance not in self.config.pool.maintenance_tiers:
            raise InvalidMaintenance(
                f"Maintenance {maintenance} not in {self.config.pool.maintenance_tiers}"
            )

        oracle = self.registry.get_feed(token0.address, token1.address, oracle_fee)
        check_observation_cardinality(oracle, self.config.oracle.observation_cardinality_minimum)

        key = self._key(token0.address, token1.address, maintenance, oracle.address)
        if key in self._pools:
            raise PoolExists(f"Pool already exists at {self._pools[key].address}")

        address = self.compute_pool_address(*key)
        pool = MarginPool(
            address=address,
            factory=self.address,
            token0=token0,
            token1=token1,
            maintenance=maintenance,
            oracle=oracle,
            env=self.env,
            native=self.native,
            config=self.config,
        )
        self._pools[key] = pool
        self._by_address[address] = pool

        logger.info(
            "Pool %s created by %s: %s/%s maintenance=%d oracle=%s",
            address, to_checksum_address(sender), token0.symbol, token1.symbol, maintenance, oracle.address,
        )
        return pool

    def get_pool(self, token0: str, token1: str, maintenance: int, oracle: str) -> Optional[MarginPool]:
        if token0.lower() > token1.lower():
            token0, token1 = token1, token0
        return self._pools.get(self._key(token0, token1, maintenance, oracle))

    def pool_at(self, address: str) -> Optional[MarginPool]:
        return self._by_address.get(to_checksum_address(address))

    def get_all_pools(self) -> List[MarginPool]:
        return list(self._pools.values())
