import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bidledger.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Auction states (JSON documents keyed by auction id).
    2. External account balances.
    3. Append-only event log per auction.
    4. Metadata (schema version, default auction).
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            # 1. Auction states
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    history_digest TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            # 2. Account balances (TEXT: values may exceed 64-bit)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    address TEXT PRIMARY KEY,
                    balance TEXT NOT NULL
                )
            """)

            # 3. Events
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    auction_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_auction ON events(auction_id);")

            # 4. Metadata
            conn.execute("""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    # =========================================================================
    # Auctions
    # =========================================================================

    def get_auction(self, auction_id: str) -> Optional[Tuple[str, str]]:
        """Get (state_json, history_digest) for an auction."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT state, history_digest FROM auctions WHERE auction_id = ?", (auction_id,)
        )
        row = cursor.fetchone()
        return (row['state'], row['history_digest']) if row else None

    def get_auction_ids(self) -> List[str]:
        """All auction ids, oldest first."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT auction_id FROM auctions ORDER BY created_at ASC, auction_id ASC")
        return [row['auction_id'] for row in cursor]

    # =========================================================================
    # Accounts
    # =========================================================================

    def get_all_accounts(self) -> Dict[str, int]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT address, balance FROM accounts")
        return {row['address']: int(row['balance']) for row in cursor}

    def save_accounts(self, balances: Dict[str, int]):
        conn = self._get_conn()
        with conn:
            conn.executemany(
                "INSERT OR REPLACE INTO accounts (address, balance) VALUES (?, ?)",
                [(address, str(balance)) for address, balance in balances.items()]
            )

    # =========================================================================
    # Events
    # =========================================================================

    def get_events(self, auction_id: str) -> List[Tuple[str, str]]:
        """Get (kind, data_json) for an auction in emission order."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT kind, data FROM events WHERE auction_id = ? ORDER BY seq ASC", (auction_id,)
        )
        return [(row['kind'], row['data']) for row in cursor]

    # =========================================================================
    # Metadata
    # =========================================================================

    def set_meta(self, key: str, value: str):
        conn = self._get_conn()
        with conn:
            conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value))

    def get_meta(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    # =========================================================================
    # Combined Update
    # =========================================================================

    def persist_auction_update(
        self,
        auction_id: str,
        state_json: str,
        history_digest: str,
        created_at: int,
        balances: Dict[str, int],
        new_events: List[Tuple[str, str]],
    ):
        """
        Atomically persist the result of one ledger operation.

        Args:
            auction_id: Auction identifier
            state_json: Serialized auction state
            history_digest: Fingerprint of the bid history
            created_at: Auction creation timestamp
            balances: Full account balances
            new_events: List of (kind, data_json) emitted by the operation
        """
        conn = self._get_conn()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO auctions (auction_id, state, history_digest, created_at) "
                "VALUES (?, ?, ?, ?)",
                (auction_id, state_json, history_digest, created_at)
            )

            conn.executemany(
                "INSERT OR REPLACE INTO accounts (address, balance) VALUES (?, ?)",
                [(address, str(balance)) for address, balance in balances.items()]
            )

            conn.executemany(
                "INSERT INTO events (auction_id, kind, data) VALUES (?, ?, ?)",
                [(auction_id, kind, data) for kind, data in new_events]
            )

    def close(self):
        if hasattr(self._conn_local, "conn"):
            self._conn_local.conn.close()
            del self._conn_local.conn
