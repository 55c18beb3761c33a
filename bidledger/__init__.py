"""
Bid Ledger

Single-item English auction ledger:
- Bids with minimum increment and anti-sniping deadline reset
- Per-bidder deposits and mid-auction partial refunds
- Best-effort refund sweep with pull-based fallback
- Owner payout gated on settled refunds
"""

__version__ = "0.1.0"
