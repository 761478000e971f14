"""
Marginpool TOML Configuration Loader

Loads the sections of marginpool.toml with environment variable overrides.
Each section is a dataclass with ``from_dict`` and ``apply_env``.

Environment variable mapping:
    [pool] fee                          -> MARGINPOOL_FEE
    [pool] reward_premium               -> MARGINPOOL_REWARD_PREMIUM
    [oracle] seconds_ago                -> MARGINPOOL_ORACLE_SECONDS_AGO
    [oracle] observation_cardinality_minimum
                                        -> MARGINPOOL_OBSERVATION_CARDINALITY_MINIMUM
    [liquidation] base_fee_min          -> MARGINPOOL_BASE_FEE_MIN
    [logging] level                     -> MARGINPOOL_LOG_LEVEL
    ...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    BASE_FEE_MIN,
    FEE,
    FEE_UNIT,
    FUNDING_PERIOD,
    GAS_LIQUIDATE,
    MAINTENANCE_TIERS,
    MAINTENANCE_UNIT,
    OBSERVATION_CARDINALITY_MINIMUM,
    REWARD_PREMIUM,
    SECONDS_AGO,
    TICK_CUMULATIVE_RATE_MAX,
)
from ..exceptions import ConfigurationError
from ..logger import configure_logging, get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class PoolSectionConfig:
    """[pool] section."""
    fee: int = FEE
    reward_premium: int = REWARD_PREMIUM
    maintenance_tiers: List[int] = field(default_factory=lambda: list(MAINTENANCE_TIERS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolSectionConfig":
        return cls(
            fee=data.get("fee", FEE),
            reward_premium=data.get("reward_premium", REWARD_PREMIUM),
            maintenance_tiers=list(data.get("maintenance_tiers", MAINTENANCE_TIERS)),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("MARGINPOOL_FEE"):
            self.fee = int(v)
        if v := os.environ.get("MARGINPOOL_REWARD_PREMIUM"):
            self.reward_premium = int(v)
        if v := os.environ.get("MARGINPOOL_MAINTENANCE_TIERS"):
            self.maintenance_tiers = [int(t.strip()) for t in v.split(",") if t.strip()]


@dataclass
class OracleSectionConfig:
    """[oracle] section."""
    seconds_ago: int = SECONDS_AGO
    funding_period: int = FUNDING_PERIOD
    tick_cumulative_rate_max: int = TICK_CUMULATIVE_RATE_MAX
    observation_cardinality_minimum: int = OBSERVATION_CARDINALITY_MINIMUM

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleSectionConfig":
        return cls(
            seconds_ago=data.get("seconds_ago", SECONDS_AGO),
            funding_period=data.get("funding_period", FUNDING_PERIOD),
            tick_cumulative_rate_max=data.get("tick_cumulative_rate_max", TICK_CUMULATIVE_RATE_MAX),
            observation_cardinality_minimum=data.get(
                "observation_cardinality_minimum", OBSERVATION_CARDINALITY_MINIMUM
            ),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("MARGINPOOL_ORACLE_SECONDS_AGO"):
            self.seconds_ago = int(v)
        if v := os.environ.get("MARGINPOOL_FUNDING_PERIOD"):
            self.funding_period = int(v)
        if v := os.environ.get("MARGINPOOL_TICK_CUMULATIVE_RATE_MAX"):
            self.tick_cumulative_rate_max = int(v)
        if v := os.environ.get("MARGINPOOL_OBSERVATION_CARDINALITY_MINIMUM"):
            self.observation_cardinality_minimum = int(v)


@dataclass
class LiquidationSectionConfig:
    """[liquidation] section."""
    gas_liquidate: int = GAS_LIQUIDATE
    base_fee_min: int = BASE_FEE_MIN

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LiquidationSectionConfig":
        return cls(
            gas_liquidate=data.get("gas_liquidate", GAS_LIQUIDATE),
            base_fee_min=data.get("base_fee_min", BASE_FEE_MIN),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("MARGINPOOL_GAS_LIQUIDATE"):
            self.gas_liquidate = int(v)
        if v := os.environ.get("MARGINPOOL_BASE_FEE_MIN"):
            self.base_fee_min = int(v)


@dataclass
class LoggingSectionConfig:
    """[logging] section."""
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSectionConfig":
        return cls(
            level=data.get("level", "INFO"),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("MARGINPOOL_LOG_LEVEL"):
            self.level = v


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass
class MarginPoolConfig:
    """All sections of marginpool.toml."""
    pool: PoolSectionConfig = field(default_factory=PoolSectionConfig)
    oracle: OracleSectionConfig = field(default_factory=OracleSectionConfig)
    liquidation: LiquidationSectionConfig = field(default_factory=LiquidationSectionConfig)
    logging: LoggingSectionConfig = field(default_factory=LoggingSectionConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarginPoolConfig":
        return cls(
            pool=PoolSectionConfig.from_dict(data.get("pool", {})),
            oracle=OracleSectionConfig.from_dict(data.get("oracle", {})),
            liquidation=LiquidationSectionConfig.from_dict(data.get("liquidation", {})),
            logging=LoggingSectionConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "MarginPoolConfig":
        """
        Load configuration from a TOML file.

        A missing file is not an error: defaults are used, with environment
        overrides still applied.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomli.load(f)

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.pool.apply_env()
        self.oracle.apply_env()
        self.liquidation.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        if not 0 < self.pool.fee < FEE_UNIT:
            raise ConfigurationError(f"fee must be in (0, {FEE_UNIT}): {self.pool.fee}")
        if self.pool.reward_premium < 0:
            raise ConfigurationError("reward_premium must be >= 0")
        if not self.pool.maintenance_tiers:
            raise ConfigurationError("maintenance_tiers must not be empty")
        for tier in self.pool.maintenance_tiers:
            if not 0 < tier <= MAINTENANCE_UNIT:
                raise ConfigurationError(f"Invalid maintenance tier: {tier}")
        if self.oracle.seconds_ago < 1:
            raise ConfigurationError("seconds_ago must be >= 1")
        if self.oracle.funding_period < 1:
            raise ConfigurationError("funding_period must be >= 1")
        if self.oracle.tick_cumulative_rate_max < 0:
            raise ConfigurationError("tick_cumulative_rate_max must be >= 0")
        if self.oracle.observation_cardinality_minimum < 1:
            raise ConfigurationError("observation_cardinality_minimum must be >= 1")
        if self.liquidation.gas_liquidate < 0 or self.liquidation.base_fee_min < 0:
            raise ConfigurationError("liquidation gas and base fee must be >= 0")
        if self.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        return True

    def configure_logging(self) -> None:
        """Apply the [logging] section to the process-wide logging system."""
        configure_logging(log_level=self.logging.level)

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics)."""
        return {
            "pool": {
                "fee": self.pool.fee,
                "reward_premium": self.pool.reward_premium,
                "maintenance_tiers": list(self.pool.maintenance_tiers),
            },
            "oracle": {
                "seconds_ago": self.oracle.seconds_ago,
                "funding_period": self.oracle.funding_period,
                "tick_cumulative_rate_max": self.oracle.tick_cumulative_rate_max,
                "observation_cardinality_minimum": self.oracle.observation_cardinality_minimum,
            },
            "liquidation": {
                "gas_liquidate": self.liquidation.gas_liquidate,
                "base_fee_min": self.liquidation.base_fee_min,
            },
            "logging": {
                "level": self.logging.level,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> MarginPoolConfig:
    """
    Load pool configuration.

    Resolution order:
        1. Explicit *path* argument
        2. MARGINPOOL_CONFIG env var
        3. ./marginpool.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("MARGINPOOL_CONFIG", "marginpool.toml")

    cfg = MarginPoolConfig.from_file(path)
    cfg.validate()
    return cfg
