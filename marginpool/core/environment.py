"""
Block environment shared by pools, feeds and the factory.

Pool operations never read wall-clock time: deadlines, oracle windows and
funding all run on the injected block timestamp so that simulations and
tests are deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..constants import BASE_FEE_MIN


@dataclass
class BlockEnvironment:
    """Current block: timestamp (seconds), height and base fee (wei per gas)."""
    timestamp: int = 1_700_000_000
    number: int = 1
    base_fee: int = BASE_FEE_MIN

    def advance(self, seconds: int, blocks: int = 1) -> int:
        """Mine ``blocks`` blocks spanning ``seconds`` seconds. Returns the new timestamp."""
        if seconds < 0:
            raise ValueError("Cannot move block time backwards")
        if blocks < 0:
            raise ValueError("Block count must be non-negative")
        self.timestamp += seconds
        self.number += blocks
        return self.timestamp

    def set_base_fee(self, base_fee: int) -> None:
        if base_fee < 0:
            raise ValueError("Base fee must be non-negative")
        self.base_fee = base_fee
