"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auction states
- External account balances
- Event history
"""

from bidledger.core.storage.sqlite_adapter import SQLiteAdapter
from bidledger.core.storage.storage_manager import StorageError, StorageManager

__all__ = ["SQLiteAdapter", "StorageError", "StorageManager"]
