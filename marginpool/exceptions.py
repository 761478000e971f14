"""
Marginpool Exceptions

Custom exception classes for the pool, its math libraries and its tokens.

Failures are grouped into caller-input, solvency, state and token families.
"""


class MarginPoolException(Exception):
    """Base exception for marginpool."""
    pass


# -- Caller-input violations --------------------------------------------------

class CallerInputError(MarginPoolException):
    """Caller-supplied limits or arguments are not satisfied."""
    pass


class DeadlineExpired(CallerInputError):
    """Block timestamp is past the caller's deadline."""
    pass


class SizeLessThanMin(CallerInputError):
    """Position size is below the caller's minimum."""
    pass


class DebtGreaterThanMax(CallerInputError):
    """Position debt exceeds the caller's maximum."""
    pass


class AmountInGreaterThanMax(CallerInputError):
    """Payment owed by the caller exceeds the caller's maximum."""
    pass


class RewardsLessThanMin(CallerInputError):
    """Posted liquidation rewards are below the required minimum."""
    pass


class InvalidSqrtPriceLimit(CallerInputError):
    """Price limit is on the wrong side of the current price or out of bounds."""
    pass


class SqrtPriceLimitExceeded(CallerInputError):
    """Opening the position would move the price past the caller's limit."""
    pass


class SwapNoProgress(CallerInputError):
    """Swap would move no tokens."""
    pass


class InvalidLiquidityDelta(CallerInputError):
    """Liquidity delta is zero or exceeds what the pool can give up."""
    pass


class SizeGreaterThanReserve(CallerInputError):
    """Requested size is not less than the output reserve."""
    pass


class InvalidMarginIn(CallerInputError):
    """Margin top-up must be positive."""
    pass


class PaymentNotReceived(CallerInputError):
    """Callback returned without transferring the owed amount to the pool."""
    pass


class InvalidSqrtPriceX96(CallerInputError):
    """Square-root price is outside [MIN_SQRT_RATIO, MAX_SQRT_RATIO)."""
    pass


# -- Solvency violations --------------------------------------------------------

class SolvencyError(MarginPoolException):
    """Collateral or liquidity is insufficient for the operation."""
    pass


class MarginLessThanMin(SolvencyError):
    """Margin is below the maintenance minimum at the oracle price."""
    pass


class PositionNotSafe(SolvencyError):
    """Position is unsafe and cannot be settled."""
    pass


class PositionSafe(SolvencyError):
    """Position is safe and cannot be liquidated."""
    pass


class InsufficientLiquidity(SolvencyError):
    """Pool has no free liquidity to trade against."""
    pass


# -- Configuration / state violations -----------------------------------------

class StateError(MarginPoolException):
    """Pool, oracle or position is in the wrong state for the operation."""
    pass


class NotInitialized(StateError):
    """Pool has not been initialized with a starting price."""
    pass


class AlreadyInitialized(StateError):
    """Pool has already been initialized."""
    pass


class InvalidOracle(StateError):
    """No reference feed exists for the token pair and fee."""
    pass


class InvalidObservationCardinality(StateError):
    """Reference feed keeps fewer observations than required."""
    pass


class OracleObservationTooOld(StateError):
    """Requested observation predates the oldest one the feed holds."""
    pass


class Locked(StateError):
    """Reentrant call while the pool is locked."""
    pass


class Unauthorized(StateError):
    """Caller is not the registered owner of the position."""
    pass


class InvalidPosition(StateError):
    """Position does not exist."""
    pass


class PositionLiquidated(StateError):
    """Position has already been liquidated."""
    pass


class InvalidMaintenance(StateError):
    """Maintenance ratio is not one of the supported tiers."""
    pass


class InvalidTokens(StateError):
    """Pool tokens are identical."""
    pass


class PoolExists(StateError):
    """A pool for this key has already been created."""
    pass


class ConfigurationError(StateError):
    """Configuration error."""
    pass


# -- Token ledger ---------------------------------------------------------------

class TokenError(MarginPoolException):
    """Base exception for token operations."""
    pass


class InsufficientBalanceError(TokenError):
    """Raised when sender balance is too low."""
    pass


class InsufficientAllowanceError(TokenError):
    """Raised when spender allowance is too low."""
    pass


class NonTransferableError(TokenError):
    """Raised when moving balance held by a non-transferable holder."""
    pass


class MinterOnlyError(TokenError):
    """Raised when someone other than the minter mints or burns."""
    pass
