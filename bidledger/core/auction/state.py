"""
Auction state - the single aggregate mutated by the ledger.

All fields are plain data so the whole state can be snapshotted for
rollback and serialized for storage. Sequences are append-only; nothing
in ``bids``, ``bids_by_user`` or ``participants`` is ever rewritten.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from pydantic import TypeAdapter

from bidledger.core.config import AuctionConfig
from bidledger.crypto import keccak256, bytes_to_hex


@dataclass(frozen=True)
class BidRecord:
    """Entry of the public bid history."""
    bidder: str
    amount: int
    timestamp: int


@dataclass(frozen=True)
class UserBid:
    """Entry of one bidder's own history."""
    amount: int
    timestamp: int


@dataclass
class AuctionState:
    """
    Complete state of one auction.

    Attributes:
        owner: Auction creator, immutable
        end_time: Deadline; only moves forward, frozen once ended
        ended: Set once by end_auction
        highest_bid / highest_bidder: Current leader
        bids: Public bid history
        participants: Bidders in first-bid order
        has_participated: Membership flags for ``participants``
        bids_by_user: Per-bidder history
        last_valid_user_bid: Amount of each bidder's latest accepted bid
        total_deposited_by_user: Value each bidder has in the ledger
        balance: Value currently held by the ledger
        commission_retained: Sum of commissions kept from refunds
        last_timestamp: Latest timestamp seen, for clock monotonicity
    """
    auction_id: str
    owner: str
    created_at: int
    end_time: int
    rules: AuctionConfig = field(default_factory=AuctionConfig)

    ended: bool = False
    highest_bid: int = 0
    highest_bidder: Optional[str] = None

    bids: List[BidRecord] = field(default_factory=list)
    participants: List[str] = field(default_factory=list)
    has_participated: Dict[str, bool] = field(default_factory=dict)
    bids_by_user: Dict[str, List[UserBid]] = field(default_factory=dict)
    last_valid_user_bid: Dict[str, int] = field(default_factory=dict)
    total_deposited_by_user: Dict[str, int] = field(default_factory=dict)

    balance: int = 0
    commission_retained: int = 0
    last_timestamp: int = 0

    def copy(self) -> "AuctionState":
        """Snapshot for rollback. Records and rules are frozen, so only containers are copied."""
        return replace(
            self,
            bids=list(self.bids),
            participants=list(self.participants),
            has_participated=dict(self.has_participated),
            bids_by_user={user: list(history) for user, history in self.bids_by_user.items()},
            last_valid_user_bid=dict(self.last_valid_user_bid),
            total_deposited_by_user=dict(self.total_deposited_by_user),
        )

    def deposit_of(self, user: str) -> int:
        return self.total_deposited_by_user.get(user, 0)

    def pending_refunds(self) -> Dict[str, int]:
        """Non-winner participants that still hold a deposit."""
        return {
            user: self.deposit_of(user)
            for user in self.participants
            if user != self.highest_bidder and self.deposit_of(user) > 0
        }

    def history_digest(self) -> str:
        """Keccak-256 fingerprint of the public bid history."""
        digest = bytes(32)
        for record in self.bids:
            digest = keccak256(
                digest
                + record.bidder.encode()
                + record.amount.to_bytes(32, "big")
                + record.timestamp.to_bytes(8, "big")
            )
        return bytes_to_hex(digest)


_state_adapter = TypeAdapter(AuctionState)


def state_to_json(state: AuctionState) -> bytes:
    """Serialize an auction state to JSON."""
    return _state_adapter.dump_json(state)


def state_from_json(data) -> AuctionState:
    """Parse and validate a JSON-encoded auction state."""
    return _state_adapter.validate_json(data)
