"""
Exception hierarchy for the bid ledger.

Four categories, each with concrete subclasses naming the violated
condition:

- AuthorizationError: caller lacks the required role
- StateError: operation invoked in the wrong lifecycle phase
- ValidationError: input value rejected
- TransferError: a native value transfer failed

A failed operation leaves the ledger exactly as it was before the call.
"""

from enum import Enum


class AuctionError(Exception):
    """Base class for all ledger errors."""


class AuthorizationError(AuctionError):
    """Caller is not allowed to perform this operation."""


class StateError(AuctionError):
    """Operation not allowed in the current auction phase."""


class ValidationError(AuctionError):
    """Input value rejected."""


class TransferError(AuctionError):
    """Native value transfer failed."""


# =============================================================================
# Authorization
# =============================================================================


class NotOwner(AuthorizationError):
    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(f"{operation}: caller {caller} is not the auction owner")


# =============================================================================
# State
# =============================================================================


class AuctionStillActive(StateError):
    def __init__(self, now: int, end_time: int, awaiting_end: bool = False):
        self.now = now
        self.end_time = end_time
        if awaiting_end:
            msg = f"auction has reached its deadline ({end_time}) but has not been ended"
        else:
            msg = f"auction still active: now={now}, ends at {end_time}"
        super().__init__(msg)


class AlreadyEnded(StateError):
    def __init__(self):
        super().__init__("auction has already been ended")


class NoWinner(StateError):
    def __init__(self):
        super().__init__("no bids were placed, there is no winner to settle against")


class RefundsPending(StateError):
    def __init__(self, pending: dict):
        self.pending = dict(pending)
        super().__init__(
            f"{len(self.pending)} participant(s) still hold unrefunded deposits"
        )


class AuctionClosed(StateError):
    """Operation requires an auction that is still taking bids."""


class ClockError(StateError):
    def __init__(self, now: int, last_seen: int):
        self.now = now
        self.last_seen = last_seen
        super().__init__(f"timestamp went backwards: {now} < {last_seen}")


# =============================================================================
# Validation
# =============================================================================


class BidRejection(str, Enum):
    """Why a bid was refused."""
    AUCTION_INACTIVE = "auction-inactive"
    ZERO_VALUE = "zero-value"
    INSUFFICIENT_INCREMENT = "insufficient-increment"


class InvalidBid(ValidationError):
    """A bid was refused; ``reason`` says why."""

    def __init__(self, reason: BidRejection, detail: str):
        self.reason = reason
        super().__init__(f"invalid bid ({reason.value}): {detail}")


class AuctionInactive(InvalidBid, AuctionClosed):
    def __init__(self, detail: str):
        super().__init__(BidRejection.AUCTION_INACTIVE, detail)


class ZeroValueBid(InvalidBid):
    def __init__(self):
        super().__init__(BidRejection.ZERO_VALUE, "bid value must be greater than zero")


class BidTooLow(InvalidBid):
    def __init__(self, value: int, minimum: int):
        self.value = value
        self.minimum = minimum
        super().__init__(
            BidRejection.INSUFFICIENT_INCREMENT,
            f"bid {value} is below the minimum of {minimum}",
        )


class NoRefundAvailable(ValidationError):
    def __init__(self, user: str, detail: str = "no refund available"):
        self.user = user
        super().__init__(f"{detail} for {user}")


class WinnerRefundDenied(ValidationError):
    def __init__(self, user: str):
        self.user = user
        super().__init__(f"{user} is the highest bidder; the winning deposit is not refundable")


class DirectDepositRejected(ValidationError):
    def __init__(self, sender: str, value: int):
        self.sender = sender
        self.value = value
        super().__init__(f"direct transfer of {value} from {sender} rejected, use bid()")


class InvalidDuration(ValidationError):
    pass


class NoFundsAvailable(ValidationError):
    def __init__(self):
        super().__init__("ledger balance is zero, nothing to withdraw")


# =============================================================================
# Transfers
# =============================================================================


class RefundTransferFailed(TransferError):
    def __init__(self, user: str, amount: int):
        self.user = user
        self.amount = amount
        super().__init__(f"refund transfer of {amount} to {user} failed")


class TransferFailed(TransferError):
    def __init__(self, recipient: str, amount: int):
        self.recipient = recipient
        self.amount = amount
        super().__init__(f"transfer of {amount} to {recipient} failed")


class InsufficientFunds(TransferError):
    def __init__(self, account: str, available: int, needed: int):
        self.account = account
        self.available = available
        self.needed = needed
        super().__init__(f"insufficient funds in {account}: have {available}, need {needed}")


__all__ = [
    "AuctionError",
    "AuthorizationError",
    "StateError",
    "ValidationError",
    "TransferError",
    "NotOwner",
    "AuctionStillActive",
    "AlreadyEnded",
    "NoWinner",
    "RefundsPending",
    "AuctionClosed",
    "ClockError",
    "BidRejection",
    "InvalidBid",
    "AuctionInactive",
    "ZeroValueBid",
    "BidTooLow",
    "NoRefundAvailable",
    "WinnerRefundDenied",
    "DirectDepositRejected",
    "InvalidDuration",
    "NoFundsAvailable",
    "RefundTransferFailed",
    "TransferFailed",
    "InsufficientFunds",
]
