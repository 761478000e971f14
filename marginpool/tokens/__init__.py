"""
Token ledgers

Provides:
  - Token       : in-memory fungible token (pool assets, native rewards currency)
  - ShareToken  : pool liquidity shares with locked holders
"""

from .token import (
    ApprovalEvent,
    ShareToken,
    Token,
    TransferEvent,
    ZERO_ADDRESS,
)

__all__ = [
    "ApprovalEvent",
    "ShareToken",
    "Token",
    "TransferEvent",
    "ZERO_ADDRESS",
]
