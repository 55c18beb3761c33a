"""
Unit tests for ending and settling an auction.

Tests cover:
1. end_auction authorization and timing
2. Refund sweep (commission, winner exclusion, failure isolation)
3. Pull refunds and retry
4. Owner withdrawal gate
"""

import pytest

from bidledger.core.accounts import AccountBook
from bidledger.core.auction import AuctionLedger
from bidledger.core.errors import (
    AlreadyEnded,
    AuctionStillActive,
    AuthorizationError,
    NoFundsAvailable,
    NoRefundAvailable,
    NotOwner,
    NoWinner,
    RefundsPending,
    RefundTransferFailed,
    StateError,
    TransferError,
    TransferFailed,
    ValidationError,
    WinnerRefundDenied,
)
from bidledger.core.events import AuctionEnded, RefundFailed, RefundIssued
from bidledger.crypto import address_from_label


OWNER = address_from_label("owner")
ALICE = address_from_label("alice")
BOB = address_from_label("bob")
CAROL = address_from_label("carol")
DAVE = address_from_label("dave")

T0 = 1_000_000
END = T0 + 3600
FUNDS = 10_000


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def accounts():
    book = AccountBook()
    for who in (ALICE, BOB, CAROL):
        book.mint(who, FUNDS)
    return book


@pytest.fixture
def ledger(accounts):
    return AuctionLedger.create(OWNER, duration_minutes=60, now=T0, accounts=accounts)


@pytest.fixture
def bid_ledger(ledger):
    """Alice 100, Bob 200, Carol 300 (Carol leads)."""
    ledger.bid(ALICE, 100, T0)
    ledger.bid(BOB, 200, T0 + 1)
    ledger.bid(CAROL, 300, T0 + 2)
    return ledger


# =============================================================================
# End Auction
# =============================================================================


class TestEndAuction:
    """Tests for closing the auction."""

    def test_only_owner(self, bid_ledger):
        with pytest.raises(NotOwner) as exc_info:
            bid_ledger.end_auction(ALICE, END)
        assert isinstance(exc_info.value, AuthorizationError)
        assert not bid_ledger.ended

    def test_too_early(self, bid_ledger):
        with pytest.raises(AuctionStillActive):
            bid_ledger.end_auction(OWNER, END - 1)
        assert not bid_ledger.ended

    def test_twice(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        with pytest.raises(AlreadyEnded):
            bid_ledger.end_auction(OWNER, END + 1)

    def test_end_time_frozen(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END + 50)
        assert bid_ledger.end_time == END

    def test_emits_auction_ended(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        assert bid_ledger.events.filter(AuctionEnded) == [AuctionEnded(winner=CAROL, amount=300)]

    def test_sweeps_non_winners(self, bid_ledger, accounts):
        report = bid_ledger.end_auction(OWNER, END)

        assert report.refunded == {ALICE: 98, BOB: 196}
        assert report.failed == {}
        assert bid_ledger.get_user_total_amount(ALICE) == 0
        assert bid_ledger.get_user_total_amount(BOB) == 0
        assert accounts.balance_of(ALICE) == FUNDS - 100 + 98
        assert accounts.balance_of(BOB) == FUNDS - 200 + 196

    def test_winner_deposit_untouched(self, bid_ledger, accounts):
        bid_ledger.end_auction(OWNER, END)
        assert bid_ledger.get_user_total_amount(CAROL) == 300
        assert accounts.balance_of(CAROL) == FUNDS - 300
        assert bid_ledger.balance == 300 + 2 + 4
        assert bid_ledger.state.commission_retained == 6

    def test_event_order(self, bid_ledger):
        mark = bid_ledger.events.mark()
        bid_ledger.end_auction(OWNER, END)
        assert bid_ledger.events.since(mark) == [
            AuctionEnded(winner=CAROL, amount=300),
            RefundIssued(user=ALICE, amount=98),
            RefundIssued(user=BOB, amount=196),
        ]

    def test_no_bids(self, ledger):
        assert ledger.end_auction(OWNER, END) is None
        assert ledger.ended
        assert ledger.events.filter(AuctionEnded) == [AuctionEnded(winner=None, amount=0)]

    def test_failed_transfer_does_not_undo_end(self, bid_ledger, accounts):
        accounts.reject_transfers(ALICE)

        report = bid_ledger.end_auction(OWNER, END)

        assert bid_ledger.ended
        assert report.failed == {ALICE: 98}
        assert report.refunded == {BOB: 196}
        assert bid_ledger.get_user_total_amount(ALICE) == 100
        assert bid_ledger.events.filter(RefundFailed) == [RefundFailed(user=ALICE, amount=98)]
        assert accounts.balance_of(ALICE) == FUNDS - 100


# =============================================================================
# Commission
# =============================================================================


class TestCommission:
    """Refund payout is deposit minus floor(2%)."""

    @pytest.mark.parametrize("deposit,payout", [(49, 49), (50, 49), (149, 147), (1000, 980)])
    def test_payout_floor(self, ledger, deposit, payout):
        ledger.bid(ALICE, deposit, T0)
        ledger.bid(BOB, 5000, T0 + 1)
        report = ledger.end_auction(OWNER, END)

        assert report.refunded[ALICE] == payout
        assert ledger.state.commission_retained == deposit - payout


# =============================================================================
# Refund All
# =============================================================================


class TestRefundAll:
    """Tests for the owner-triggered sweep outside end_auction."""

    def test_only_owner(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        with pytest.raises(NotOwner):
            bid_ledger.refund_all(BOB, END + 1)

    def test_requires_ended(self, bid_ledger):
        with pytest.raises(AuctionStillActive):
            bid_ledger.refund_all(OWNER, END - 1)
        with pytest.raises(AuctionStillActive):
            bid_ledger.refund_all(OWNER, END + 1)

    def test_requires_winner(self, ledger):
        ledger.end_auction(OWNER, END)
        with pytest.raises(NoWinner) as exc_info:
            ledger.refund_all(OWNER, END + 1)
        assert isinstance(exc_info.value, StateError)

    def test_retries_failed_refund(self, bid_ledger, accounts):
        accounts.reject_transfers(ALICE)
        bid_ledger.end_auction(OWNER, END)

        accounts.reject_transfers(ALICE, False)
        report = bid_ledger.refund_all(OWNER, END + 1)

        assert report.refunded == {ALICE: 98}
        assert bid_ledger.get_user_total_amount(ALICE) == 0

    def test_nothing_left(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        report = bid_ledger.refund_all(OWNER, END + 1)
        assert report.refunded == {}
        assert report.failed == {}

    def test_failures_isolated(self, ledger, accounts):
        accounts.mint(DAVE, FUNDS)
        ledger.bid(ALICE, 100, T0)
        ledger.bid(BOB, 200, T0 + 1)
        ledger.bid(DAVE, 300, T0 + 2)
        ledger.bid(CAROL, 400, T0 + 3)
        accounts.reject_transfers(BOB)

        report = ledger.end_auction(OWNER, END)

        assert report.refunded == {ALICE: 98, DAVE: 294}
        assert report.failed == {BOB: 196}


# =============================================================================
# Withdraw Refund
# =============================================================================


class TestWithdrawRefund:
    """Tests for pull refunds."""

    def test_recovers_failed_sweep(self, bid_ledger, accounts):
        accounts.reject_transfers(ALICE)
        bid_ledger.end_auction(OWNER, END)
        accounts.reject_transfers(ALICE, False)

        payout = bid_ledger.withdraw_refund(ALICE, END + 10)

        assert payout == 98
        assert bid_ledger.get_user_total_amount(ALICE) == 0
        assert accounts.balance_of(ALICE) == FUNDS - 100 + 98
        assert bid_ledger.events.filter(RefundIssued)[-1] == RefundIssued(user=ALICE, amount=98)

    def test_second_withdraw_fails(self, bid_ledger, accounts):
        accounts.reject_transfers(ALICE)
        bid_ledger.end_auction(OWNER, END)
        accounts.reject_transfers(ALICE, False)

        bid_ledger.withdraw_refund(ALICE, END + 10)
        with pytest.raises(NoRefundAvailable) as exc_info:
            bid_ledger.withdraw_refund(ALICE, END + 11)
        assert isinstance(exc_info.value, ValidationError)

    def test_transfer_failure_surfaces(self, bid_ledger, accounts):
        accounts.reject_transfers(ALICE)
        bid_ledger.end_auction(OWNER, END)
        balance = bid_ledger.balance
        events = len(bid_ledger.events)

        with pytest.raises(RefundTransferFailed) as exc_info:
            bid_ledger.withdraw_refund(ALICE, END + 10)

        assert isinstance(exc_info.value, TransferError)
        assert exc_info.value.amount == 98
        assert bid_ledger.get_user_total_amount(ALICE) == 100
        assert bid_ledger.balance == balance
        assert len(bid_ledger.events) == events

    def test_requires_ended(self, bid_ledger):
        with pytest.raises(AuctionStillActive):
            bid_ledger.withdraw_refund(ALICE, T0 + 10)
        with pytest.raises(AuctionStillActive):
            bid_ledger.withdraw_refund(ALICE, END + 10)

    def test_winner_denied(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        with pytest.raises(WinnerRefundDenied):
            bid_ledger.withdraw_refund(CAROL, END + 1)
        assert bid_ledger.get_user_total_amount(CAROL) == 300

    def test_stranger_has_nothing(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        with pytest.raises(NoRefundAvailable):
            bid_ledger.withdraw_refund(DAVE, END + 1)


# =============================================================================
# Owner Funds
# =============================================================================


class TestWithdrawOwnerFunds:
    """Tests for the owner payout gate."""

    def test_only_owner(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        with pytest.raises(NotOwner):
            bid_ledger.withdraw_owner_funds(CAROL, END + 1)

    def test_requires_ended(self, bid_ledger):
        with pytest.raises(AuctionStillActive):
            bid_ledger.withdraw_owner_funds(OWNER, T0 + 10)

    def test_blocked_by_pending_refund(self, bid_ledger, accounts):
        accounts.reject_transfers(BOB)
        bid_ledger.end_auction(OWNER, END)

        with pytest.raises(RefundsPending) as exc_info:
            bid_ledger.withdraw_owner_funds(OWNER, END + 1)

        assert exc_info.value.pending == {BOB: 200}
        assert bid_ledger.balance > 0

    def test_drains_balance(self, bid_ledger, accounts):
        bid_ledger.end_auction(OWNER, END)

        amount = bid_ledger.withdraw_owner_funds(OWNER, END + 1)

        assert amount == 306
        assert bid_ledger.balance == 0
        assert accounts.balance_of(OWNER) == 306

    def test_after_pull_refund(self, bid_ledger, accounts):
        accounts.reject_transfers(BOB)
        bid_ledger.end_auction(OWNER, END)
        accounts.reject_transfers(BOB, False)
        bid_ledger.withdraw_refund(BOB, END + 1)

        assert bid_ledger.withdraw_owner_funds(OWNER, END + 2) == 306

    def test_nothing_to_withdraw(self, bid_ledger):
        bid_ledger.end_auction(OWNER, END)
        bid_ledger.withdraw_owner_funds(OWNER, END + 1)
        with pytest.raises(NoFundsAvailable):
            bid_ledger.withdraw_owner_funds(OWNER, END + 2)

    def test_no_bids(self, ledger):
        ledger.end_auction(OWNER, END)
        with pytest.raises(NoFundsAvailable):
            ledger.withdraw_owner_funds(OWNER, END + 1)

    def test_owner_rejects_transfer(self, bid_ledger, accounts):
        bid_ledger.end_auction(OWNER, END)
        accounts.reject_transfers(OWNER)

        with pytest.raises(TransferFailed):
            bid_ledger.withdraw_owner_funds(OWNER, END + 1)

        assert bid_ledger.balance == 306
        assert accounts.balance_of(OWNER) == 0


# =============================================================================
# Conservation
# =============================================================================


def test_value_is_conserved(bid_ledger, accounts):
    """External balances plus ledger balance never change in total."""
    total = accounts.total() + bid_ledger.balance

    accounts.reject_transfers(ALICE)
    bid_ledger.end_auction(OWNER, END)
    assert accounts.total() + bid_ledger.balance == total

    accounts.reject_transfers(ALICE, False)
    bid_ledger.withdraw_refund(ALICE, END + 1)
    bid_ledger.withdraw_owner_funds(OWNER, END + 2)

    assert bid_ledger.balance == 0
    assert accounts.total() == total


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
