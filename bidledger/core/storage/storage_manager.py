import json
from pathlib import Path
from typing import List, Optional

from bidledger.core.accounts import AccountBook
from bidledger.core.auction.ledger import AuctionLedger
from bidledger.core.auction.state import state_from_json, state_to_json
from bidledger.core.events import EventLog, event_from_dict, event_to_dict
from bidledger.core.storage.sqlite_adapter import SQLiteAdapter
from bidledger.utils.logger import get_logger

logger = get_logger("storage.manager")


class StorageError(Exception):
    """Stored data is missing or inconsistent."""


class StorageManager:
    """
    Manages persistent storage for auctions.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Auction state documents
    - External account balances
    - Per-auction event history
    - Metadata (current auction)
    """

    def __init__(self, data_dir: Path, db_name: str = "auctions.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.debug(f"StorageManager initialized at {self.db_path}")

    # =========================================================================
    # Accounts
    # =========================================================================

    def load_accounts(self) -> AccountBook:
        """Load all external balances into a fresh AccountBook."""
        return AccountBook(self.adapter.get_all_accounts())

    def save_accounts(self, accounts: AccountBook):
        self.adapter.save_accounts(accounts.snapshot())

    # =========================================================================
    # Auctions
    # =========================================================================

    def save_ledger(self, ledger: AuctionLedger, events_since: int = 0):
        """
        Persist a ledger after an operation.

        Args:
            ledger: The ledger to save
            events_since: Index of the first event not yet stored
        """
        new_events = [
            (kind, json.dumps(data))
            for kind, data in (
                _split_kind(event_to_dict(event)) for event in ledger.events.since(events_since)
            )
        ]
        self.adapter.persist_auction_update(
            auction_id=ledger.auction_id,
            state_json=state_to_json(ledger.state).decode("utf-8"),
            history_digest=ledger.state.history_digest(),
            created_at=ledger.state.created_at,
            balances=ledger.accounts.snapshot(),
            new_events=new_events,
        )
        logger.debug(f"Saved auction {ledger.auction_id} ({len(new_events)} new events)")

    def load_ledger(self, auction_id: str, accounts: Optional[AccountBook] = None) -> AuctionLedger:
        """
        Load an auction with its event history.

        Raises:
            StorageError: unknown auction or bid history fingerprint mismatch
        """
        row = self.adapter.get_auction(auction_id)
        if row is None:
            raise StorageError(f"Auction {auction_id} not found")

        state_json, stored_digest = row
        state = state_from_json(state_json)
        if state.history_digest() != stored_digest:
            raise StorageError(f"Auction {auction_id}: bid history does not match stored digest")

        events = EventLog([
            event_from_dict({"kind": kind, **json.loads(data)})
            for kind, data in self.adapter.get_events(auction_id)
        ])
        if accounts is None:
            accounts = self.load_accounts()

        logger.debug(f"Loaded auction {auction_id}: {len(state.bids)} bids, {len(events)} events")
        return AuctionLedger(state, accounts=accounts, events=events)

    def has_auction(self, auction_id: str) -> bool:
        return self.adapter.get_auction(auction_id) is not None

    def list_auctions(self) -> List[str]:
        return self.adapter.get_auction_ids()

    # =========================================================================
    # Metadata
    # =========================================================================

    def set_current_auction(self, auction_id: str):
        self.adapter.set_meta("current_auction", auction_id)

    def get_current_auction(self) -> Optional[str]:
        return self.adapter.get_meta("current_auction")

    def close(self):
        self.adapter.close()


def _split_kind(data: dict):
    fields = dict(data)
    return fields.pop("kind"), fields
