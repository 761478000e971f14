"""
Marginpool Configuration

Loads all sections of marginpool.toml.
Environment variables override TOML values.
"""

from .loader import (
    PoolSectionConfig,
    OracleSectionConfig,
    LiquidationSectionConfig,
    LoggingSectionConfig,
    MarginPoolConfig,
    load_config,
)

__all__ = [
    "PoolSectionConfig",
    "OracleSectionConfig",
    "LiquidationSectionConfig",
    "LoggingSectionConfig",
    "MarginPoolConfig",
    "load_config",
]
