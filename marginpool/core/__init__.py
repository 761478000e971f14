"""
Marginpool core: curve math, reference-feed oracle, position accounting,
the pool state machine and its factory.
"""

from .environment import BlockEnvironment
from .factory import PoolFactory, PoolKey, compute_pool_address
from .oracle import FeedRegistry, Observation, ObservationFeed, ReferenceFeed, Slot0
from .pool import MarginPool, PoolEvent, PoolState
from .position import Position, position_key

__all__ = [
    "BlockEnvironment",
    "FeedRegistry",
    "MarginPool",
    "Observation",
    "ObservationFeed",
    "PoolEvent",
    "PoolFactory",
    "PoolKey",
    "PoolState",
    "Position",
    "ReferenceFeed",
    "Slot0",
    "compute_pool_address",
    "position_key",
]
