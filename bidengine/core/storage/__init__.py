"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auctions, bids and the bid hash chain
- Idempotency records and notifications
- Commission settings, payouts, escrow accounts
- Double-entry ledger and seller risk controls
"""

from bidengine.core.storage.sqlite_adapter import SQLiteAdapter
from bidengine.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
