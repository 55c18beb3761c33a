"""
Accounts - external balances and the native value transfer primitive.

The auction ledger never moves value by itself. It asks the ``AccountBook``
to:

1. ``collect`` a bid's value from the bidder (part of the bid call), and
2. ``send`` refunds and proceeds back out.

``send`` is fallible: a recipient may refuse incoming value
(``reject_transfers``) or run a receive hook that raises. A refused transfer
returns ``False`` and moves nothing; the caller decides what failure means.

Receive hooks run after the recipient has been credited and may call back
into the ledger (reentrancy). Whatever the hook raises, the credit is
reversed and ``send`` returns ``False``; the exception never reaches the
ledger operation that paid out.
"""

from collections import defaultdict
from typing import Callable, Dict, Optional, Set

from bidledger.core.errors import InsufficientFunds
from bidledger.crypto import short
from bidledger.utils.logger import get_logger

logger = get_logger("accounts")

ReceiveHook = Callable[[int], None]


class TransferRejected(Exception):
    """Raised by a receive hook to refuse an incoming transfer."""


class AccountBook:
    """
    Balances of external accounts (bidders, owner).

    Attributes:
        balances: address -> spendable balance
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self.balances: Dict[str, int] = defaultdict(int, balances or {})
        self._rejecting: Set[str] = set()
        self._hooks: Dict[str, ReceiveHook] = {}

    # =========================================================================
    # Balances
    # =========================================================================

    def mint(self, address: str, amount: int) -> None:
        """Fund an account out of thin air (genesis / faucet)."""
        if amount < 0:
            raise ValueError("mint amount must be non-negative")
        self.balances[address] += amount
        logger.debug(f"Minted {amount} to {short(address)}")

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def collect(self, sender: str, amount: int) -> None:
        """
        Debit ``amount`` from ``sender`` (value attached to a call).

        Raises:
            InsufficientFunds: sender cannot cover the amount
        """
        available = self.balance_of(sender)
        if available < amount:
            raise InsufficientFunds(sender, available, amount)
        self.balances[sender] = available - amount

    # =========================================================================
    # Transfers
    # =========================================================================

    def reject_transfers(self, address: str, rejecting: bool = True) -> None:
        """Make ``address`` refuse (or accept again) incoming transfers."""
        if rejecting:
            self._rejecting.add(address)
        else:
            self._rejecting.discard(address)

    def set_receive_hook(self, address: str, hook: Optional[ReceiveHook]) -> None:
        """Install code that runs when ``address`` receives value."""
        if hook is None:
            self._hooks.pop(address, None)
        else:
            self._hooks[address] = hook

    def send(self, recipient: str, amount: int) -> bool:
        """
        Transfer ``amount`` to ``recipient``.

        Returns:
            True if the recipient accepted the value, False otherwise
        """
        if recipient in self._rejecting:
            logger.warning(f"Transfer of {amount} to {short(recipient)} rejected by recipient")
            return False

        self.balances[recipient] += amount

        hook = self._hooks.get(recipient)
        if hook is not None:
            try:
                hook(amount)
            except Exception as exc:
                self.balances[recipient] -= amount
                logger.warning(
                    f"Transfer of {amount} to {short(recipient)} reverted by receive hook: "
                    f"{type(exc).__name__}: {exc}"
                )
                return False

        logger.debug(f"Sent {amount} to {short(recipient)}")
        return True

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> Dict[str, int]:
        return dict(self.balances)

    def restore(self, snapshot: Dict[str, int]) -> None:
        self.balances = defaultdict(int, snapshot)

    def total(self) -> int:
        return sum(self.balances.values())

    def __repr__(self) -> str:
        return f"AccountBook(accounts={len(self.balances)}, total={self.total()})"
