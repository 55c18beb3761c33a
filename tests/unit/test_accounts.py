"""
Unit tests for the account book (external balances and transfers).
"""

import pytest

from bidledger.core.accounts import AccountBook, TransferRejected
from bidledger.core.errors import InsufficientFunds, NoRefundAvailable
from bidledger.crypto import address_from_label


ALICE = address_from_label("alice")
BOB = address_from_label("bob")


@pytest.fixture
def book():
    book = AccountBook()
    book.mint(ALICE, 1000)
    return book


class TestBalances:
    """Tests for minting and collecting."""

    def test_mint(self, book):
        assert book.balance_of(ALICE) == 1000
        assert book.balance_of(BOB) == 0

    def test_negative_mint_rejected(self, book):
        with pytest.raises(ValueError):
            book.mint(ALICE, -1)

    def test_collect(self, book):
        book.collect(ALICE, 400)
        assert book.balance_of(ALICE) == 600

    def test_collect_insufficient(self, book):
        with pytest.raises(InsufficientFunds) as exc_info:
            book.collect(ALICE, 1001)
        assert exc_info.value.available == 1000
        assert book.balance_of(ALICE) == 1000


class TestSend:
    """Tests for the fallible transfer primitive."""

    def test_send_credits(self, book):
        assert book.send(BOB, 50)
        assert book.balance_of(BOB) == 50

    def test_rejecting_recipient(self, book):
        book.reject_transfers(BOB)
        assert not book.send(BOB, 50)
        assert book.balance_of(BOB) == 0

        book.reject_transfers(BOB, False)
        assert book.send(BOB, 50)

    def test_hook_sees_credit(self, book):
        seen = []
        book.set_receive_hook(BOB, lambda amount: seen.append((amount, book.balance_of(BOB))))

        assert book.send(BOB, 70)
        assert seen == [(70, 70)]

    def test_hook_reverts(self, book):
        def refuse(amount):
            raise TransferRejected("not today")

        book.set_receive_hook(BOB, refuse)
        assert not book.send(BOB, 70)
        assert book.balance_of(BOB) == 0

    def test_hook_ledger_error_reverts(self, book):
        def reenter(amount):
            raise NoRefundAvailable(BOB)

        book.set_receive_hook(BOB, reenter)
        assert not book.send(BOB, 70)
        assert book.balance_of(BOB) == 0

    def test_hook_crash_reverts(self, book):
        def crash(amount):
            raise RuntimeError("boom")

        book.set_receive_hook(BOB, crash)
        assert not book.send(BOB, 70)
        assert book.balance_of(BOB) == 0
        assert book.total() == 1000

    def test_hook_removed(self, book):
        book.set_receive_hook(BOB, lambda amount: None)
        book.set_receive_hook(BOB, None)
        assert book.send(BOB, 1)


class TestSnapshot:
    """Tests for snapshot/restore used by ledger rollback."""

    def test_restore(self, book):
        snap = book.snapshot()
        book.collect(ALICE, 500)
        book.send(BOB, 500)

        book.restore(snap)

        assert book.balance_of(ALICE) == 1000
        assert book.balance_of(BOB) == 0
        assert book.total() == 1000


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
