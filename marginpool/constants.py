"""
Marginpool Constants

This module consolidates the protocol constants and the environment
configuration used throughout the code base. Constants are organized by
category for easy reference and maintenance.
"""
import ast
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_ENABLED':                'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW DEFINE THE FIXED-POINT FORMATS OF THE PROTOCOL. CHANGING THEM BREAKS
# BIT-EXACT COMPATIBILITY OF PRICES, AMOUNTS AND ROUNDING DIRECTIONS.

# ==================================================================================
# FIXED-POINT FORMATS
# ==================================================================================
Q96 = 1 << 96
Q128 = 1 << 128
Q192 = 1 << 192
UINT256_MAX = (1 << 256) - 1


# ==================================================================================
# TICK BOUNDS (Uniswap TickMath)
# ==================================================================================
MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342


# ==================================================================================
# POOL PARAMETERS
# ==================================================================================
FEE_UNIT = 1_000_000
FEE = 1000  # 0.1% of notional / swap input
MAINTENANCE_UNIT = 1_000_000
MAINTENANCE_TIERS = (250_000, 500_000, 1_000_000)  # 25%, 50%, 100% maintenance
# Shares minted to the pool itself on the first deposit and never released
MINIMUM_LIQUIDITY = 10_000


# ==================================================================================
# ORACLE AND FUNDING PARAMETERS
# ==================================================================================
SECONDS_AGO = 43_200  # 12 hour TWAP window
FUNDING_PERIOD = 604_800  # 7 days
# Max oracle/pool tick divergence accrued per second (~9.2% per funding unit)
TICK_CUMULATIVE_RATE_MAX = 920
OBSERVATION_CARDINALITY_MINIMUM = 7_200


# ==================================================================================
# LIQUIDATION PARAMETERS
# ==================================================================================
REWARD_UNIT = 1_000_000
REWARD_PREMIUM = 2_000_000  # 2x the estimated liquidation gas cost
GAS_LIQUIDATE = 150_000
BASE_FEE_MIN = 1_000_000_000  # 1 gwei


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    def __hash__(self):
        return hash(bool(self))


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
DEFAULTS = dict(LOGGER_DEFAULTS)
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
