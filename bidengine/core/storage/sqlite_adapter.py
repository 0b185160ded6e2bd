import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from bidengine.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Schema for auctions, bids, the bid hash-chain ledger, idempotency
       records, commission settings, payouts, escrow accounts, the
       double-entry settlement ledger and seller risk controls.
    2. Thread-local connections in WAL mode.
    3. Write transactions opened with BEGIN IMMEDIATE. SQLite admits a
       single writer at a time, so an immediate transaction is the
       serialization point for read-validate-write sequences such as
       "re-read price, insert bid, advance price, append ledger".
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn_local = threading.local()

        if not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False,
                isolation_level=None,  # explicit BEGIN/COMMIT only
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            self._conn_local.conn = conn
            self._conn_local.depth = 0
        return self._conn_local.conn

    def close(self):
        """Close the current thread's connection."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Open (or join) a write transaction.

        The outermost call issues BEGIN IMMEDIATE and commits on success or
        rolls back on any exception; nested calls on the same thread join
        the outer transaction.
        """
        conn = self._get_conn()
        if self._conn_local.depth > 0:
            self._conn_local.depth += 1
            try:
                yield conn
            finally:
                self._conn_local.depth -= 1
            return

        conn.execute("BEGIN IMMEDIATE")
        self._conn_local.depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._conn_local.depth = 0

    @contextmanager
    def savepoint(self, name: str) -> Iterator[sqlite3.Connection]:
        """
        Nested savepoint inside the current transaction.

        On error only the work done since the savepoint is undone; the
        exception still propagates to the caller.
        """
        conn = self._get_conn()
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")

    @property
    def in_transaction(self) -> bool:
        return getattr(self._conn_local, "depth", 0) > 0

    # =========================================================================
    # Generic Operations
    # =========================================================================

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement (joining any open transaction). Returns rowcount."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute(sql, params).fetchall()

    # =========================================================================
    # Schema
    # =========================================================================

    def _init_schema(self):
        """Initialize database schema."""
        with self.transaction() as conn:
            # 1. Auctions & products
            conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL DEFAULT 'listed'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    starting_price TEXT,
                    current_price TEXT,
                    increment_amount TEXT,
                    start_date TEXT,
                    end_date TEXT,
                    seller_id TEXT,
                    product_id TEXT,
                    winner_id TEXT,
                    final_price TEXT,
                    highest_bid_id TEXT,
                    actual_end_time TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_status ON auctions(status, end_date);")

            # 2. Bids (append-only)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    id TEXT PRIMARY KEY,
                    auction_id TEXT NOT NULL REFERENCES auctions(id),
                    bidder_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bids_auction ON bids(auction_id, status);")

            # 3. Bid ledger (hash chain per auction)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bid_ledger (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    auction_id TEXT NOT NULL,
                    bid_id TEXT NOT NULL UNIQUE,
                    bidder_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    ts TEXT NOT NULL,
                    prev_hash TEXT,
                    hash TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bid_ledger_auction ON bid_ledger(auction_id, seq);")

            # 4. Idempotency records for place-bid
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bid_requests (
                    idempotency_key TEXT NOT NULL,
                    auction_id TEXT NOT NULL,
                    bidder_id TEXT NOT NULL,
                    response TEXT NOT NULL,
                    status_code INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (idempotency_key, auction_id, bidder_id)
                )
            """)

            # 5. Notifications
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    auction_id TEXT,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            # 6. Commission settings
            conn.execute("""
                CREATE TABLE IF NOT EXISTS commission_settings (
                    id TEXT PRIMARY KEY,
                    buyer_commission_percent TEXT NOT NULL,
                    seller_commission_percent TEXT NOT NULL,
                    platform_flat_fee_cents INTEGER NOT NULL DEFAULT 0,
                    category_overrides TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)

            # 7. Payouts & escrow
            conn.execute("""
                CREATE TABLE IF NOT EXISTS payouts (
                    id TEXT PRIMARY KEY,
                    seller_id TEXT,
                    product_id TEXT,
                    sale_price TEXT NOT NULL,
                    commission_amount TEXT NOT NULL,
                    buyer_commission_amount TEXT NOT NULL DEFAULT '0',
                    net_payout TEXT NOT NULL,
                    payout_reference TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'pending',
                    currency TEXT NOT NULL DEFAULT 'INR',
                    created_at TEXT NOT NULL,
                    paid_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS escrow_accounts (
                    id TEXT PRIMARY KEY,
                    auction_id TEXT NOT NULL,
                    buyer_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_escrow_auction ON escrow_accounts(auction_id, buyer_id);")

            # 8. Double-entry settlement ledger
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_accounts (
                    id TEXT PRIMARY KEY,
                    owner_type TEXT NOT NULL,
                    owner_id TEXT,
                    account_type TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_account_owner "
                "ON ledger_accounts(owner_type, COALESCE(owner_id, ''), account_type, currency);"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id TEXT PRIMARY KEY,
                    transaction_id TEXT NOT NULL,
                    account_id TEXT NOT NULL REFERENCES ledger_accounts(id),
                    payout_id TEXT,
                    debit INTEGER NOT NULL DEFAULT 0,
                    credit INTEGER NOT NULL DEFAULT 0,
                    balance_after INTEGER NOT NULL,
                    ts TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_entries_tx ON ledger_entries(transaction_id);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_entries_payout ON ledger_entries(payout_id);")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS wallet_balances (
                    account_id TEXT PRIMARY KEY REFERENCES ledger_accounts(id),
                    balance_cents INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # 9. Seller risk
            conn.execute("""
                CREATE TABLE IF NOT EXISTS seller_risk_scores (
                    seller_id TEXT PRIMARY KEY,
                    risk_score REAL NOT NULL,
                    risk_level TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_controls (
                    user_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL DEFAULT 'normal',
                    penalty_points INTEGER NOT NULL DEFAULT 0,
                    cooldown_until TEXT,
                    cooldown_reason TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS seller_penalties (
                    id TEXT PRIMARY KEY,
                    seller_id TEXT NOT NULL,
                    penalty_type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    points INTEGER NOT NULL,
                    reason TEXT,
                    evidence TEXT,
                    applied_by TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_penalties_seller ON seller_penalties(seller_id);")

            # Payouts created before the buyer commission was recorded
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(payouts)")}
            if "buyer_commission_amount" not in columns:
                conn.execute(
                    "ALTER TABLE payouts ADD COLUMN buyer_commission_amount TEXT NOT NULL DEFAULT '0'"
                )

        logger.debug(f"Schema ready at {self.db_path}")
