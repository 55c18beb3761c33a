"""
Auction Ledger - bidding and settlement state machine.

Lifecycle:
---------
1. **Bidding**: ``bid()`` accepts value until ``end_time``. Each bid must beat
   the highest bid by the minimum increment. A bid arriving less than the
   extension window before the deadline resets the deadline to
   ``now + window`` (a reset, never an addition).
2. **Ending**: the owner calls ``end_auction()`` once the deadline passes.
   The same call sweeps refunds to every non-winner (``refund_all``).
3. **Settlement**: bidders whose sweep transfer failed pull their refund
   with ``withdraw_refund()``. Once no non-winner holds a deposit the owner
   drains the ledger with ``withdraw_owner_funds()``.

While bidding is open, a bidder who has bid more than once may reclaim
deposits beyond their latest bid with ``partial_refund()``.

Every refund keeps a commission; the winning deposit is never refunded.

Atomicity:
---------
Each operation runs inside ``_atomic()``: on any exception the state, the
external balances and the event log are restored to their values at entry.
The refund sweep is the one place where failures are absorbed: one
participant's rejected transfer is recorded and the sweep moves on.

Reentrancy:
----------
Value leaves the ledger only through ``AccountBook.send``, which may run
recipient code that calls back into the ledger. Deposits are zeroed (or
collapsed) and the ledger balance debited *before* the transfer and restored
if it fails, so a reentrant call never sees a refund it could claim twice.
Each payout also runs under a savepoint (``_send``): when the recipient
refuses, anything its hook did to the ledger first is rolled back too.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Tuple

from bidledger.core.accounts import AccountBook
from bidledger.core.auction.state import AuctionState, BidRecord, UserBid
from bidledger.core.config import AuctionConfig
from bidledger.core.errors import (
    AlreadyEnded,
    AuctionClosed,
    AuctionInactive,
    AuctionStillActive,
    BidTooLow,
    ClockError,
    DirectDepositRejected,
    InvalidDuration,
    NoFundsAvailable,
    NoRefundAvailable,
    NotOwner,
    NoWinner,
    RefundsPending,
    RefundTransferFailed,
    TransferFailed,
    ValidationError,
    WinnerRefundDenied,
    ZeroValueBid,
)
from bidledger.core.events import (
    AuctionEnded,
    EventLog,
    NewBid,
    RefundFailed,
    RefundIssued,
)
from bidledger.crypto import normalize_address, short
from bidledger.utils.logger import get_logger
from bidledger.utils.validation import (
    validate_address,
    validate_amount,
    validate_duration,
    validate_timestamp,
)

logger = get_logger("auction")


@dataclass
class SettlementReport:
    """Outcome of a refund sweep: payouts that went through and those that bounced."""
    refunded: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, int] = field(default_factory=dict)

    @property
    def total_paid(self) -> int:
        return sum(self.refunded.values())


class AuctionLedger:
    """
    Single-item English auction with deposits, refunds and owner payout.

    All mutating methods take the caller identity and the current timestamp
    (unix seconds). Timestamps must never go backwards.

    Attributes:
        state: The auction aggregate
        accounts: External balances and transfer primitive
        events: Notifications emitted by committed operations
    """

    def __init__(
        self,
        state: AuctionState,
        accounts: Optional[AccountBook] = None,
        events: Optional[EventLog] = None,
    ):
        self.state = state
        self.accounts = accounts if accounts is not None else AccountBook()
        self.events = events if events is not None else EventLog()
        self._depth = 0

    @classmethod
    def create(
        cls,
        owner: str,
        duration_minutes: int,
        now: int,
        accounts: Optional[AccountBook] = None,
        config: Optional[AuctionConfig] = None,
        auction_id: Optional[str] = None,
    ) -> "AuctionLedger":
        """
        Open a new auction.

        Args:
            owner: Address of the auction creator
            duration_minutes: Bidding period, 1..max_duration_minutes
            now: Creation timestamp
            accounts: Shared account book (new one if None)
            config: Auction rules (defaults if None)
            auction_id: Identifier (random if None)

        Raises:
            InvalidDuration: duration out of range
            ValidationError: malformed owner or timestamp
        """
        rules = config or AuctionConfig()
        owner = _identity(owner)

        is_valid, error = validate_duration(duration_minutes, rules.max_duration_minutes)
        if not is_valid:
            raise InvalidDuration(error)
        is_valid, error = validate_timestamp(now)
        if not is_valid:
            raise ValidationError(error)

        state = AuctionState(
            auction_id=auction_id or uuid.uuid4().hex[:16],
            owner=owner,
            created_at=now,
            end_time=now + duration_minutes * 60,
            rules=rules,
            last_timestamp=now,
        )
        logger.info(
            f"Auction {state.auction_id} created by {short(owner)}, "
            f"bidding until {state.end_time} ({duration_minutes} min)"
        )
        return cls(state, accounts=accounts)

    # =========================================================================
    # State Access
    # =========================================================================

    @property
    def auction_id(self) -> str:
        return self.state.auction_id

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def rules(self) -> AuctionConfig:
        return self.state.rules

    @property
    def end_time(self) -> int:
        return self.state.end_time

    @property
    def ended(self) -> bool:
        return self.state.ended

    @property
    def highest_bid(self) -> int:
        return self.state.highest_bid

    @property
    def highest_bidder(self) -> Optional[str]:
        return self.state.highest_bidder

    @property
    def balance(self) -> int:
        """Value currently held by the ledger."""
        return self.state.balance

    def is_active(self, now: int) -> bool:
        """Whether bids are accepted at ``now``."""
        return not self.state.ended and now < self.state.end_time

    def is_finished(self, now: int) -> bool:
        """Whether settlement operations are allowed at ``now``."""
        return self.state.ended and now >= self.state.end_time

    def min_next_bid(self) -> int:
        """Smallest bid that would currently be accepted."""
        return max(1, self.rules.min_next_bid(self.state.highest_bid))

    def get_winner(self) -> Tuple[Optional[str], int]:
        """Current leader and amount (the winner once ended)."""
        return self.state.highest_bidder, self.state.highest_bid

    def get_all_bids(self) -> List[BidRecord]:
        return list(self.state.bids)

    def get_user_bids(self, user: str) -> List[UserBid]:
        return list(self.state.bids_by_user.get(_identity(user), []))

    def get_user_total_amount(self, user: str) -> int:
        """Value ``user`` currently has deposited in the ledger."""
        return self.state.deposit_of(_identity(user))

    def get_last_valid_bid(self, user: str) -> int:
        return self.state.last_valid_user_bid.get(_identity(user), 0)

    def get_participants(self) -> List[str]:
        return list(self.state.participants)

    # =========================================================================
    # Bidding
    # =========================================================================

    def bid(self, caller: str, value: int, now: int) -> None:
        """
        Place a bid of ``value`` (charged from the caller's account).

        Raises:
            AuctionInactive: auction ended or deadline passed
            ZeroValueBid: value is zero
            BidTooLow: value below highest bid plus minimum increment
            InsufficientFunds: caller cannot pay the value
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            is_valid, error = validate_amount(value)
            if not is_valid:
                raise ValidationError(error)

            s = self.state
            if s.ended:
                raise AuctionInactive("auction has been ended")
            if now >= s.end_time:
                raise AuctionInactive(f"bidding closed at {s.end_time}")
            if value == 0:
                raise ZeroValueBid()
            minimum = self.rules.min_next_bid(s.highest_bid)
            if value < minimum:
                raise BidTooLow(value, minimum)

            self.accounts.collect(caller, value)
            s.balance += value

            s.bids.append(BidRecord(bidder=caller, amount=value, timestamp=now))
            s.bids_by_user.setdefault(caller, []).append(UserBid(amount=value, timestamp=now))
            s.last_valid_user_bid[caller] = value
            s.total_deposited_by_user[caller] = s.deposit_of(caller) + value

            if not s.has_participated.get(caller):
                s.has_participated[caller] = True
                s.participants.append(caller)

            s.highest_bid = value
            s.highest_bidder = caller

            if s.end_time - now < self.rules.extension_window:
                s.end_time = now + self.rules.extension_window
                logger.info(f"Late bid: deadline reset to {s.end_time}")

            self.events.emit(NewBid(bidder=caller, amount=value))
            logger.debug(f"Bid {value} from {short(caller)} accepted at {now}")

    def receive(self, sender: str, value: int) -> None:
        """Plain value transfer into the ledger. Always rejected."""
        raise DirectDepositRejected(sender, value)

    # =========================================================================
    # Ending & Settlement
    # =========================================================================

    def end_auction(self, caller: str, now: int) -> Optional[SettlementReport]:
        """
        Close the auction and sweep refunds to every non-winner.

        Returns:
            The sweep report, or None when nobody bid

        Raises:
            NotOwner, AuctionStillActive, AlreadyEnded
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            self._require_owner(caller, "end_auction")
            s = self.state
            if s.ended:
                raise AlreadyEnded()
            if now < s.end_time:
                raise AuctionStillActive(now, s.end_time)

            s.ended = True
            self.events.emit(AuctionEnded(winner=s.highest_bidder, amount=s.highest_bid))
            logger.info(
                f"Auction {s.auction_id} ended: winner="
                f"{short(s.highest_bidder) if s.highest_bidder else None}, amount={s.highest_bid}"
            )

            if s.highest_bidder is None:
                return None
            return self._sweep_refunds()

    def refund_all(self, caller: str, now: int) -> SettlementReport:
        """
        Owner-triggered best-effort refund of every non-winner.

        Raises:
            NotOwner, AuctionStillActive, NoWinner
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            self._require_owner(caller, "refund_all")
            self._require_finished(now)
            if self.state.highest_bidder is None:
                raise NoWinner()
            return self._sweep_refunds()

    def withdraw_refund(self, caller: str, now: int) -> int:
        """
        Pull the caller's own refund after the auction has ended.

        Returns:
            Amount paid out (deposit minus commission)

        Raises:
            AuctionStillActive, WinnerRefundDenied, NoRefundAvailable,
            RefundTransferFailed
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            self._require_finished(now)
            success, payout = self._process_refund(caller)
            if not success:
                raise RefundTransferFailed(caller, payout)
            return payout

    def partial_refund(self, caller: str, now: int) -> int:
        """
        Reclaim deposits beyond the caller's latest bid while bidding is open.

        Returns:
            Amount paid out (excess minus commission)

        Raises:
            AuctionClosed, NoRefundAvailable, RefundTransferFailed
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            s = self.state
            if not self.is_active(now):
                raise AuctionClosed("partial refunds are only available while bidding is open")
            if len(s.bids_by_user.get(caller, [])) < 2:
                raise NoRefundAvailable(caller, "no refund available (fewer than two bids placed)")
            last_valid = s.last_valid_user_bid.get(caller, 0)
            if last_valid <= 0:
                raise NoRefundAvailable(caller)

            deposit = s.deposit_of(caller)
            excess = deposit - last_valid
            if excess <= 0:
                raise NoRefundAvailable(caller, "no excess deposit")

            commission = self.rules.commission_on(excess)
            payout = excess - commission

            s.total_deposited_by_user[caller] = last_valid
            s.balance -= payout
            if not self._send(caller, payout):
                raise RefundTransferFailed(caller, payout)

            s.commission_retained += commission
            self.events.emit(RefundIssued(user=caller, amount=payout))
            logger.info(f"Partial refund {payout} to {short(caller)} (commission {commission})")
            return payout

    def withdraw_owner_funds(self, caller: str, now: int) -> int:
        """
        Transfer the whole ledger balance to the owner.

        Only allowed once every non-winner has been refunded.

        Returns:
            Amount transferred

        Raises:
            NotOwner, AuctionStillActive, RefundsPending, NoFundsAvailable,
            TransferFailed
        """
        caller = _identity(caller)
        with self._atomic():
            self._tick(now)
            self._require_owner(caller, "withdraw_owner_funds")
            self._require_finished(now)
            s = self.state

            pending = s.pending_refunds()
            if pending:
                logger.warning(f"Owner withdrawal blocked: {len(pending)} refund(s) pending")
                raise RefundsPending(pending)

            amount = s.balance
            if amount == 0:
                raise NoFundsAvailable()

            s.balance = 0
            if not self._send(s.owner, amount):
                raise TransferFailed(s.owner, amount)

            logger.info(f"Owner {short(s.owner)} withdrew {amount}")
            return amount

    # =========================================================================
    # Internals
    # =========================================================================

    def _sweep_refunds(self) -> SettlementReport:
        """Refund every non-winner with a deposit; failures do not stop the sweep."""
        s = self.state
        report = SettlementReport()
        for user in list(s.participants):
            if user == s.highest_bidder or s.deposit_of(user) == 0:
                continue
            success, payout = self._process_refund(user)
            if success:
                report.refunded[user] = payout
            else:
                report.failed[user] = payout

        if report.failed:
            logger.warning(
                f"Refund sweep: {len(report.refunded)} paid, {len(report.failed)} failed "
                f"(recoverable via withdraw_refund)"
            )
        else:
            logger.info(f"Refund sweep: {len(report.refunded)} paid, total {report.total_paid}")
        return report

    def _process_refund(self, user: str) -> Tuple[bool, int]:
        """
        Refund ``user``'s whole deposit minus commission.

        Returns:
            (success, payout)
        """
        s = self.state
        if user == s.highest_bidder:
            raise WinnerRefundDenied(user)
        deposit = s.deposit_of(user)
        if deposit <= 0:
            raise NoRefundAvailable(user)

        commission = self.rules.commission_on(deposit)
        payout = deposit - commission

        s.total_deposited_by_user[user] = 0
        s.balance -= payout
        if self._send(user, payout):
            s.commission_retained += commission
            self.events.emit(RefundIssued(user=user, amount=payout))
            logger.debug(f"Refunded {payout} to {short(user)} (commission {commission})")
            return True, payout

        s.total_deposited_by_user[user] = deposit
        s.balance += payout
        self.events.emit(RefundFailed(user=user, amount=payout))
        return False, payout

    def _send(self, recipient: str, amount: int) -> bool:
        """
        Pay ``amount`` out through the account book.

        A refused transfer also undoes whatever the recipient's hook did to
        the ledger before refusing, so the caller only has to restore its own
        pre-transfer effects.
        """
        state_snapshot = self.state.copy()
        accounts_snapshot = self.accounts.snapshot()
        mark = self.events.mark()
        if self.accounts.send(recipient, amount):
            return True

        self._restore(state_snapshot)
        self.accounts.restore(accounts_snapshot)
        self.events.rollback(mark)
        return False

    def _require_owner(self, caller: str, operation: str) -> None:
        if caller != self.state.owner:
            raise NotOwner(caller, operation)

    def _require_finished(self, now: int) -> None:
        if not self.is_finished(now):
            awaiting_end = not self.state.ended and now >= self.state.end_time
            raise AuctionStillActive(now, self.state.end_time, awaiting_end=awaiting_end)

    def _tick(self, now: int) -> None:
        is_valid, error = validate_timestamp(now)
        if not is_valid:
            raise ValidationError(error)
        if now < self.state.last_timestamp:
            raise ClockError(now, self.state.last_timestamp)
        self.state.last_timestamp = now

    @contextmanager
    def _atomic(self):
        """Run an operation all-or-nothing; publish its events on commit."""
        state_snapshot = self.state.copy()
        accounts_snapshot = self.accounts.snapshot()
        mark = self.events.mark()
        self._depth += 1
        try:
            yield
        except Exception:
            self._restore(state_snapshot)
            self.accounts.restore(accounts_snapshot)
            self.events.rollback(mark)
            raise
        finally:
            self._depth -= 1

        if self._depth == 0:
            self.events.publish(mark)

    def _restore(self, snapshot: AuctionState) -> None:
        # In place: an outer frame may hold a reference to self.state
        for f in fields(AuctionState):
            setattr(self.state, f.name, getattr(snapshot, f.name))

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return (
            f"AuctionLedger(id={self.state.auction_id}, bids={len(self.state.bids)}, "
            f"highest={self.state.highest_bid}, ended={self.state.ended})"
        )

    def stats(self) -> dict:
        """Get auction statistics."""
        s = self.state
        pending = s.pending_refunds()
        return {
            "auction_id": s.auction_id,
            "owner": s.owner,
            "end_time": s.end_time,
            "ended": s.ended,
            "bid_count": len(s.bids),
            "participant_count": len(s.participants),
            "highest_bid": s.highest_bid,
            "highest_bidder": s.highest_bidder,
            "balance": s.balance,
            "commission_retained": s.commission_retained,
            "pending_refunds": len(pending),
            "pending_refund_total": sum(pending.values()),
            "history_digest": s.history_digest(),
        }


def _identity(address: str) -> str:
    is_valid, error = validate_address(address)
    if not is_valid:
        raise ValidationError(error)
    return normalize_address(address)
