"""
Fungible token ledger

ERC-20-style in-memory token used for the pool's two assets, the native
rewards currency and the pool's liquidity shares:
  - balance_of / allowance / total_supply views
  - transfer, approve, transfer_from
  - mint / burn restricted to a designated minter
  - Event log (Transfer / Approval)
  - Snapshot / restore so a failed pool operation leaves no trace

Amounts are integers in the token's smallest unit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from eth_utils import to_checksum_address

from ..exceptions import (
    InsufficientAllowanceError,
    InsufficientBalanceError,
    MinterOnlyError,
    NonTransferableError,
    TokenError,
)
from ..logger import get_logger

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransferEvent:
    """Emitted on every transfer, mint (from zero) and burn (to zero)."""
    token_symbol: str
    sender: str
    recipient: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "token": self.token_symbol,
            "from": self.sender,
            "to": self.recipient,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class ApprovalEvent:
    """Emitted on every successful approve."""
    token_symbol: str
    owner: str
    spender: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Approval",
            "token": self.token_symbol,
            "owner": self.owner,
            "spender": self.spender,
            "amount": self.amount,
        }


# ══════════════════════════════════════════════════════════════════════
#  TOKEN
# ══════════════════════════════════════════════════════════════════════

class Token:
    """
    Fungible token ledger.

    When ``minter`` is None anyone may mint (faucet-style test tokens);
    otherwise only the minter may mint or burn.
    """

    def __init__(
        self,
        address: str,
        name: str,
        symbol: str,
        decimals: int = 18,
        minter: Optional[str] = None,
    ):
        if not name:
            raise TokenError("Token name cannot be empty")
        if not symbol:
            raise TokenError("Token symbol cannot be empty")
        if decimals < 0 or decimals > 18:
            raise TokenError(f"Decimals must be 0-18, got {decimals}")

        self.address = to_checksum_address(address)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.minter = to_checksum_address(minter) if minter else None

        self._total_supply = 0
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}  # (owner, spender)
        self._events: List[Any] = []

    def __repr__(self) -> str:
        return f"Token({self.symbol}, {self.address})"

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, address: str) -> int:
        return self._balances.get(to_checksum_address(address), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((to_checksum_address(owner), to_checksum_address(spender)), 0)

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    # ── Guards ────────────────────────────────────────────────────────

    def _require_minter(self, caller: Optional[str]) -> None:
        if self.minter is None:
            return
        if caller is None or to_checksum_address(caller) != self.minter:
            raise MinterOnlyError(f"{caller} is not the minter of {self.symbol}")

    def _require_transferable(self, sender: str) -> None:
        """Hook for ledgers with locked holders."""

    # ── Core operations ───────────────────────────────────────────────

    def transfer(self, sender: str, recipient: str, amount: int) -> TransferEvent:
        """Move ``amount`` from ``sender`` to ``recipient``."""
        if amount < 0:
            raise TokenError("Transfer amount cannot be negative")
        sender = to_checksum_address(sender)
        recipient = to_checksum_address(recipient)
        self._require_transferable(sender)

        bal = self._balances.get(sender, 0)
        if bal < amount:
            raise InsufficientBalanceError(
                f"{sender} {self.symbol} balance {bal} < transfer amount {amount}"
            )

        self._balances[sender] = bal - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount

        event = TransferEvent(self.symbol, sender, recipient, amount)
        self._events.append(event)
        logger.debug("Transfer: %s -> %s %d %s", sender, recipient, amount, self.symbol)
        return event

    def approve(self, owner: str, spender: str, amount: int) -> ApprovalEvent:
        if amount < 0:
            raise TokenError("Allowance amount cannot be negative")
        owner = to_checksum_address(owner)
        spender = to_checksum_address(spender)
        self._allowances[(owner, spender)] = amount

        event = ApprovalEvent(self.symbol, owner, spender, amount)
        self._events.append(event)
        return event

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> TransferEvent:
        """Spend ``spender``'s allowance over ``sender``'s balance."""
        key = (to_checksum_address(sender), to_checksum_address(spender))
        allowed = self._allowances.get(key, 0)
        if allowed < amount:
            raise InsufficientAllowanceError(
                f"{spender} allowance {allowed} < amount {amount} for {sender}"
            )
        event = self.transfer(sender, recipient, amount)
        self._allowances[key] = allowed - amount
        return event

    def mint(self, recipient: str, amount: int, caller: Optional[str] = None) -> TransferEvent:
        if amount < 0:
            raise TokenError("Mint amount cannot be negative")
        self._require_minter(caller)
        recipient = to_checksum_address(recipient)

        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._total_supply += amount

        event = TransferEvent(self.symbol, ZERO_ADDRESS, recipient, amount)
        self._events.append(event)
        return event

    def burn(self, holder: str, amount: int, caller: Optional[str] = None) -> TransferEvent:
        if amount < 0:
            raise TokenError("Burn amount cannot be negative")
        self._require_minter(caller)
        holder = to_checksum_address(holder)

        bal = self._balances.get(holder, 0)
        if bal < amount:
            raise InsufficientBalanceError(
                f"{holder} {self.symbol} balance {bal} < burn amount {amount}"
            )
        self._balances[holder] = bal - amount
        self._total_supply -= amount

        event = TransferEvent(self.symbol, holder, ZERO_ADDRESS, amount)
        self._events.append(event)
        return event

    # ── Snapshot / restore ────────────────────────────────────────────

    def take_snapshot(self) -> Dict[str, Any]:
        return {
            "total_supply": self._total_supply,
            "balances": dict(self._balances),
            "allowances": dict(self._allowances),
            "events": len(self._events),
        }

    def restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self._total_supply = snapshot["total_supply"]
        self._balances = snapshot["balances"]
        self._allowances = snapshot["allowances"]
        del self._events[snapshot["events"]:]


class ShareToken(Token):
    """
    Liquidity-provider shares of a pool.

    The pool is the sole minter and burner. Balances held by ``locked``
    addresses (the pool itself, for the minimum liquidity) can never move.
    """

    def __init__(
        self,
        address: str,
        name: str,
        symbol: str,
        minter: str,
        locked: Iterable[str] = (),
    ):
        super().__init__(address, name, symbol, decimals=18, minter=minter)
        self._locked_holders = {to_checksum_address(a) for a in locked}

    def _require_transferable(self, sender: str) -> None:
        if sender in self._locked_holders:
            raise NonTransferableError(f"{self.symbol} held by {sender} is not transferable")
