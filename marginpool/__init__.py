"""
Marginpool Package

Leveraged-trading AMM: a single constant-liquidity curve that also issues
margined positions collateralized by pool liquidity, priced against an
external time-weighted reference feed.

Core imports are lazily loaded. For direct module access, import from
submodules:

    from marginpool.core.pool import MarginPool
    from marginpool.core.factory import PoolFactory
    from marginpool.exceptions import DeadlineExpired
"""

__version__ = "1.0.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'MarginPool':
        from .core.pool import MarginPool
        return MarginPool
    elif name == 'PoolFactory':
        from .core.factory import PoolFactory
        return PoolFactory
    elif name == 'BlockEnvironment':
        from .core.environment import BlockEnvironment
        return BlockEnvironment
    raise AttributeError(f"module 'marginpool' has no attribute {name!r}")

__all__ = ['MarginPool', 'PoolFactory', 'BlockEnvironment']
