"""
Auction Module.

This module provides the single-item auction ledger:
- Auction state and bid history
- Bidding with increment and deadline rules
- Refund settlement and owner payout
"""

from bidledger.core.auction.state import (
    AuctionState,
    BidRecord,
    UserBid,
    state_from_json,
    state_to_json,
)

from bidledger.core.auction.ledger import (
    AuctionLedger,
    SettlementReport,
)

__all__ = [
    # State
    "AuctionState",
    "BidRecord",
    "UserBid",
    "state_from_json",
    "state_to_json",
    # Ledger
    "AuctionLedger",
    "SettlementReport",
]
