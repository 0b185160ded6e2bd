import json
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bidengine.core.records import (
    Auction,
    Bid,
    BidLedgerEntry,
    EscrowAccount,
    LedgerAccount,
    LedgerEntry,
    Payout,
    PayoutStatus,
    RiskScore,
    SellerPenalty,
    UserControls,
    parse_iso,
    to_iso,
    utc_now,
)
from bidengine.core.storage.sqlite_adapter import SQLiteAdapter
from bidengine.crypto import new_id
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import format_amount

logger = get_logger("storage.manager")


def _dec(value: Optional[str]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(value)


def _money(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format_amount(Decimal(value))


class StorageManager:
    """
    Manages persistent storage for the engine.

    Coordinates data persistence using the SQLite adapter and converts rows
    to the record types in bidengine.core.records.
    Handles:
    - Auctions, products and bids
    - The per-auction bid hash chain and idempotency records
    - Commission settings, payouts and escrow accounts
    - Double-entry ledger accounts, entries and wallet balances
    - Seller risk scores, controls and penalties
    """

    def __init__(self, data_dir: Path, db_name: str = "bidengine.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction (BEGIN IMMEDIATE); nested calls join it."""
        with self.adapter.transaction() as conn:
            yield conn

    @contextmanager
    def savepoint(self, name: str) -> Iterator[sqlite3.Connection]:
        with self.adapter.savepoint(name) as conn:
            yield conn

    def close(self):
        self.adapter.close()

    # =========================================================================
    # Auctions & Products
    # =========================================================================

    def create_auction(self, auction: Auction) -> Auction:
        """Insert an auction row (seeding and administration)."""
        self.adapter.execute(
            """
            INSERT INTO auctions (
                id, status, starting_price, current_price, increment_amount,
                start_date, end_date, seller_id, product_id, winner_id,
                final_price, highest_bid_id, actual_end_time
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                auction.id,
                auction.status,
                _money(auction.starting_price),
                _money(auction.current_price),
                _money(auction.increment_amount),
                to_iso(auction.start_date),
                to_iso(auction.end_date),
                auction.seller_id,
                auction.product_id,
                auction.winner_id,
                _money(auction.final_price),
                auction.highest_bid_id,
                to_iso(auction.actual_end_time),
            ),
        )
        return auction

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        row = self.adapter.fetch_one("SELECT * FROM auctions WHERE id = ?", (auction_id,))
        return self._row_to_auction(row) if row else None

    def update_auction_price(self, auction_id: str, amount: Decimal, bid_id: str) -> int:
        """Advance current_price and highest_bid_id after an accepted bid."""
        return self.adapter.execute(
            "UPDATE auctions SET current_price = ?, highest_bid_id = ? WHERE id = ?",
            (_money(amount), bid_id, auction_id),
        )

    def set_auction_status(self, auction_id: str, status: str) -> int:
        return self.adapter.execute(
            "UPDATE auctions SET status = ? WHERE id = ?", (status, auction_id)
        )

    def set_auction_end_date(self, auction_id: str, end_date) -> int:
        return self.adapter.execute(
            "UPDATE auctions SET end_date = ? WHERE id = ?", (to_iso(end_date), auction_id)
        )

    def finalize_auction(
        self,
        auction_id: str,
        status: str,
        winner_id: Optional[str],
        final_price: Optional[Decimal],
        highest_bid_id: Optional[str],
        actual_end_time,
    ) -> int:
        return self.adapter.execute(
            """
            UPDATE auctions
            SET status = ?, winner_id = ?, final_price = ?, highest_bid_id = ?,
                actual_end_time = ?
            WHERE id = ?
            """,
            (status, winner_id, _money(final_price), highest_bid_id, to_iso(actual_end_time), auction_id),
        )

    def list_running_auctions_ending_before(self, cutoff) -> List[Auction]:
        """Active/live auctions whose end_date is at or before cutoff."""
        rows = self.adapter.fetch_all(
            """
            SELECT * FROM auctions
            WHERE status IN ('active', 'live') AND end_date IS NOT NULL AND end_date <= ?
            ORDER BY end_date
            """,
            (to_iso(cutoff),),
        )
        return [self._row_to_auction(r) for r in rows]

    def create_product(self, product_id: str, status: str = "listed"):
        self.adapter.execute(
            "INSERT OR REPLACE INTO products (id, status) VALUES (?, ?)", (product_id, status)
        )

    def get_product_status(self, product_id: str) -> Optional[str]:
        row = self.adapter.fetch_one("SELECT status FROM products WHERE id = ?", (product_id,))
        return row["status"] if row else None

    def set_product_status(self, product_id: str, status: str) -> int:
        return self.adapter.execute(
            "UPDATE products SET status = ? WHERE id = ?", (status, product_id)
        )

    @staticmethod
    def _row_to_auction(row) -> Auction:
        return Auction(
            id=row["id"],
            status=row["status"],
            current_price=_dec(row["current_price"]),
            increment_amount=_dec(row["increment_amount"]),
            starting_price=_dec(row["starting_price"]),
            start_date=parse_iso(row["start_date"]),
            end_date=parse_iso(row["end_date"]),
            seller_id=row["seller_id"],
            product_id=row["product_id"],
            winner_id=row["winner_id"],
            final_price=_dec(row["final_price"]),
            highest_bid_id=row["highest_bid_id"],
            actual_end_time=parse_iso(row["actual_end_time"]),
        )

    # =========================================================================
    # Bids
    # =========================================================================

    def insert_bid(self, bid: Bid):
        self.adapter.execute(
            """
            INSERT INTO bids (id, auction_id, bidder_id, amount, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (bid.id, bid.auction_id, bid.bidder_id, _money(bid.amount), bid.status, to_iso(bid.created_at)),
        )

    def list_active_bids(self, auction_id: str) -> List[Bid]:
        """Active bids ordered by amount desc, then created_at desc."""
        rows = self.adapter.fetch_all(
            "SELECT * FROM bids WHERE auction_id = ? AND status = 'active'", (auction_id,)
        )
        bids = [self._row_to_bid(r) for r in rows]
        bids.sort(key=lambda b: (b.amount, b.created_at), reverse=True)
        return bids

    def highest_active_bid(self, auction_id: str) -> Optional[Bid]:
        bids = self.list_active_bids(auction_id)
        return bids[0] if bids else None

    def count_bids(self, auction_id: str) -> int:
        row = self.adapter.fetch_one(
            "SELECT COUNT(*) AS n FROM bids WHERE auction_id = ?", (auction_id,)
        )
        return row["n"]

    @staticmethod
    def _row_to_bid(row) -> Bid:
        return Bid(
            id=row["id"],
            auction_id=row["auction_id"],
            bidder_id=row["bidder_id"],
            amount=Decimal(row["amount"]),
            status=row["status"],
            created_at=parse_iso(row["created_at"]),
        )

    # =========================================================================
    # Bid Ledger (hash chain)
    # =========================================================================

    def last_ledger_entry(self, auction_id: str) -> Optional[Tuple[str, str]]:
        """(hash, ts) of the most recently appended entry."""
        row = self.adapter.fetch_one(
            """
            SELECT hash, ts FROM bid_ledger WHERE auction_id = ?
            ORDER BY seq DESC LIMIT 1
            """,
            (auction_id,),
        )
        return (row["hash"], row["ts"]) if row else None

    def insert_bid_ledger_entry(
        self,
        auction_id: str,
        bid_id: str,
        bidder_id: str,
        amount: str,
        timestamp: str,
        prev_hash: Optional[str],
        entry_hash: str,
    ) -> int:
        with self.adapter.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO bid_ledger (auction_id, bid_id, bidder_id, amount, ts, prev_hash, hash)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (auction_id, bid_id, bidder_id, amount, timestamp, prev_hash, entry_hash),
            )
            return cursor.lastrowid

    def list_bid_ledger(self, auction_id: str) -> List[BidLedgerEntry]:
        rows = self.adapter.fetch_all(
            "SELECT * FROM bid_ledger WHERE auction_id = ? ORDER BY seq", (auction_id,)
        )
        return [
            BidLedgerEntry(
                seq=r["seq"],
                auction_id=r["auction_id"],
                bid_id=r["bid_id"],
                bidder_id=r["bidder_id"],
                amount=r["amount"],
                timestamp=r["ts"],
                prev_hash=r["prev_hash"],
                hash=r["hash"],
            )
            for r in rows
        ]

    # =========================================================================
    # Idempotency Records
    # =========================================================================

    def get_bid_request(
        self, idempotency_key: str, auction_id: str, bidder_id: str
    ) -> Optional[Tuple[int, str]]:
        """Stored (status_code, canonical JSON body) for a key, if any."""
        row = self.adapter.fetch_one(
            """
            SELECT status_code, response FROM bid_requests
            WHERE idempotency_key = ? AND auction_id = ? AND bidder_id = ?
            """,
            (idempotency_key, auction_id, bidder_id),
        )
        if row is None:
            return None
        return row["status_code"], row["response"]

    def save_bid_request(
        self,
        idempotency_key: str,
        auction_id: str,
        bidder_id: str,
        status_code: int,
        response: str,
    ):
        self.adapter.execute(
            """
            INSERT INTO bid_requests (idempotency_key, auction_id, bidder_id, response, status_code, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (idempotency_key, auction_id, bidder_id, response, status_code, to_iso(utc_now())),
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    def insert_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        auction_id: Optional[str] = None,
    ) -> str:
        notification_id = new_id()
        self.adapter.execute(
            """
            INSERT INTO notifications (id, user_id, type, title, message, auction_id, read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (notification_id, user_id, notification_type, title, message, auction_id, to_iso(utc_now())),
        )
        return notification_id

    def list_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self.adapter.fetch_all(
            "SELECT * FROM notifications WHERE user_id = ? ORDER BY created_at", (user_id,)
        )
        return [dict(r) for r in rows]

    # =========================================================================
    # Commission Settings
    # =========================================================================

    def get_active_commission_settings(self) -> Optional[Dict[str, Any]]:
        row = self.adapter.fetch_one(
            "SELECT * FROM commission_settings WHERE active = 1 ORDER BY created_at DESC LIMIT 1"
        )
        if row is None:
            return None
        data = dict(row)
        data["category_overrides"] = json.loads(row["category_overrides"] or "null")
        return data

    def replace_commission_settings(
        self,
        buyer_percent: Decimal,
        seller_percent: Decimal,
        platform_flat_fee_cents: int,
        category_overrides: Optional[dict] = None,
    ) -> str:
        """Deactivate the current row and insert a new active one."""
        settings_id = new_id()
        with self.adapter.transaction() as conn:
            conn.execute("UPDATE commission_settings SET active = 0 WHERE active = 1")
            conn.execute(
                """
                INSERT INTO commission_settings (
                    id, buyer_commission_percent, seller_commission_percent,
                    platform_flat_fee_cents, category_overrides, active, created_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    settings_id,
                    str(buyer_percent),
                    str(seller_percent),
                    int(platform_flat_fee_cents),
                    json.dumps(category_overrides) if category_overrides is not None else None,
                    to_iso(utc_now()),
                ),
            )
        return settings_id

    # =========================================================================
    # Payouts & Escrow
    # =========================================================================

    def get_payout(self, payout_id: str) -> Optional[Payout]:
        row = self.adapter.fetch_one("SELECT * FROM payouts WHERE id = ?", (payout_id,))
        return self._row_to_payout(row) if row else None

    def get_payout_by_reference(self, reference: str) -> Optional[Payout]:
        row = self.adapter.fetch_one(
            "SELECT * FROM payouts WHERE payout_reference = ?", (reference,)
        )
        return self._row_to_payout(row) if row else None

    def create_payout(self, payout: Payout) -> Payout:
        """
        Insert a payout unless one already exists for its reference.

        Returns the stored row, which is the pre-existing one on conflict.
        """
        with self.adapter.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO payouts (
                    id, seller_id, product_id, sale_price, commission_amount, buyer_commission_amount,
                    net_payout, payout_reference, status, currency, created_at, paid_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payout.id,
                    payout.seller_id,
                    payout.product_id,
                    _money(payout.sale_price),
                    _money(payout.commission_amount),
                    _money(payout.buyer_commission_amount),
                    _money(payout.net_payout),
                    payout.payout_reference,
                    payout.status,
                    payout.currency,
                    to_iso(payout.created_at or utc_now()),
                    to_iso(payout.paid_at),
                ),
            )
            return self.get_payout_by_reference(payout.payout_reference)

    def mark_payout_completed(self, payout_id: str, paid_at) -> int:
        return self.adapter.execute(
            "UPDATE payouts SET status = ?, paid_at = ? WHERE id = ? AND status != ?",
            (PayoutStatus.COMPLETED.value, to_iso(paid_at), payout_id, PayoutStatus.COMPLETED.value),
        )

    def list_payouts(self) -> List[Payout]:
        rows = self.adapter.fetch_all("SELECT * FROM payouts ORDER BY created_at")
        return [self._row_to_payout(r) for r in rows]

    @staticmethod
    def _row_to_payout(row) -> Payout:
        return Payout(
            id=row["id"],
            seller_id=row["seller_id"],
            product_id=row["product_id"],
            sale_price=Decimal(row["sale_price"]),
            commission_amount=Decimal(row["commission_amount"]),
            net_payout=Decimal(row["net_payout"]),
            payout_reference=row["payout_reference"],
            status=row["status"],
            currency=row["currency"],
            created_at=parse_iso(row["created_at"]),
            paid_at=parse_iso(row["paid_at"]),
            buyer_commission_amount=Decimal(row["buyer_commission_amount"]),
        )

    def save_escrow_account(self, escrow: EscrowAccount):
        self.adapter.execute(
            """
            INSERT OR REPLACE INTO escrow_accounts (id, auction_id, buyer_id, amount_cents, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (escrow.id, escrow.auction_id, escrow.buyer_id, escrow.amount_cents, escrow.status),
        )

    def get_escrow_account(self, auction_id: str, buyer_id: str) -> Optional[EscrowAccount]:
        row = self.adapter.fetch_one(
            "SELECT * FROM escrow_accounts WHERE auction_id = ? AND buyer_id = ? LIMIT 1",
            (auction_id, buyer_id),
        )
        if row is None:
            return None
        return EscrowAccount(
            id=row["id"],
            auction_id=row["auction_id"],
            buyer_id=row["buyer_id"],
            status=row["status"],
            amount_cents=row["amount_cents"],
        )

    # =========================================================================
    # Double-Entry Ledger
    # =========================================================================

    def get_or_create_ledger_account(
        self,
        owner_type: str,
        owner_id: Optional[str],
        account_type: str,
        currency: str,
    ) -> LedgerAccount:
        """Resolve the account for (owner, account_type, currency), creating it on first use."""
        with self.adapter.transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM ledger_accounts
                WHERE owner_type = ? AND COALESCE(owner_id, '') = COALESCE(?, '')
                  AND account_type = ? AND currency = ?
                """,
                (owner_type, owner_id, account_type, currency),
            ).fetchone()
            if row is None:
                account_id = new_id()
                conn.execute(
                    """
                    INSERT INTO ledger_accounts (id, owner_type, owner_id, account_type, currency, status, created_at)
                    VALUES (?, ?, ?, ?, ?, 'active', ?)
                    """,
                    (account_id, owner_type, owner_id, account_type, currency, to_iso(utc_now())),
                )
                logger.info(f"Created ledger account {account_type} for {owner_type}:{owner_id or '-'} ({currency})")
                return LedgerAccount(account_id, owner_type, owner_id, account_type, currency)
        return LedgerAccount(
            id=row["id"],
            owner_type=row["owner_type"],
            owner_id=row["owner_id"],
            account_type=row["account_type"],
            currency=row["currency"],
            status=row["status"],
        )

    def get_wallet_balance(self, account_id: str) -> int:
        row = self.adapter.fetch_one(
            "SELECT balance_cents FROM wallet_balances WHERE account_id = ?", (account_id,)
        )
        return row["balance_cents"] if row else 0

    def upsert_wallet_balance(self, account_id: str, balance_cents: int):
        self.adapter.execute(
            """
            INSERT INTO wallet_balances (account_id, balance_cents, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                balance_cents = excluded.balance_cents,
                updated_at = excluded.updated_at
            """,
            (account_id, int(balance_cents), to_iso(utc_now())),
        )

    def insert_ledger_entries(self, entries: List[LedgerEntry]):
        """Insert a matched set of entries atomically."""
        with self.adapter.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO ledger_entries (id, transaction_id, account_id, payout_id, debit, credit, balance_after, ts)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (e.id, e.transaction_id, e.account_id, e.payout_id, e.debit, e.credit, e.balance_after, e.timestamp)
                    for e in entries
                ],
            )

    def get_ledger_entries_for_transaction(self, transaction_id: str) -> List[LedgerEntry]:
        rows = self.adapter.fetch_all(
            "SELECT * FROM ledger_entries WHERE transaction_id = ? ORDER BY ts, id", (transaction_id,)
        )
        return [self._row_to_ledger_entry(r) for r in rows]

    def get_ledger_entries_for_payout(self, payout_id: str) -> List[LedgerEntry]:
        rows = self.adapter.fetch_all(
            "SELECT * FROM ledger_entries WHERE payout_id = ? ORDER BY ts, id", (payout_id,)
        )
        return [self._row_to_ledger_entry(r) for r in rows]

    def ledger_net_by_account(self) -> Dict[str, int]:
        """credit - debit per account, summed over all ledger entries."""
        rows = self.adapter.fetch_all(
            """
            SELECT account_id, SUM(credit) - SUM(debit) AS net
            FROM ledger_entries GROUP BY account_id
            """
        )
        return {r["account_id"]: int(r["net"]) for r in rows}

    @staticmethod
    def _row_to_ledger_entry(row) -> LedgerEntry:
        return LedgerEntry(
            id=row["id"],
            transaction_id=row["transaction_id"],
            account_id=row["account_id"],
            payout_id=row["payout_id"],
            debit=row["debit"],
            credit=row["credit"],
            balance_after=row["balance_after"],
            timestamp=row["ts"],
        )

    # =========================================================================
    # Seller Risk
    # =========================================================================

    def get_risk_score(self, seller_id: str) -> Optional[RiskScore]:
        row = self.adapter.fetch_one(
            "SELECT * FROM seller_risk_scores WHERE seller_id = ?", (seller_id,)
        )
        if row is None:
            return None
        return RiskScore(
            seller_id=row["seller_id"],
            risk_score=row["risk_score"],
            risk_level=row["risk_level"],
            updated_at=parse_iso(row["updated_at"]),
        )

    def upsert_risk_score(self, seller_id: str, risk_score: float, risk_level: str):
        self.adapter.execute(
            """
            INSERT INTO seller_risk_scores (seller_id, risk_score, risk_level, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(seller_id) DO UPDATE SET
                risk_score = excluded.risk_score,
                risk_level = excluded.risk_level,
                updated_at = excluded.updated_at
            """,
            (seller_id, float(risk_score), risk_level, to_iso(utc_now())),
        )

    def get_user_controls(self, user_id: str) -> Optional[UserControls]:
        row = self.adapter.fetch_one("SELECT * FROM user_controls WHERE user_id = ?", (user_id,))
        if row is None:
            return None
        return UserControls(
            user_id=row["user_id"],
            status=row["status"],
            penalty_points=row["penalty_points"],
            cooldown_until=parse_iso(row["cooldown_until"]),
            cooldown_reason=row["cooldown_reason"],
        )

    def upsert_user_controls(self, controls: UserControls):
        self.adapter.execute(
            """
            INSERT INTO user_controls (user_id, status, penalty_points, cooldown_until, cooldown_reason, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                status = excluded.status,
                penalty_points = excluded.penalty_points,
                cooldown_until = excluded.cooldown_until,
                cooldown_reason = excluded.cooldown_reason,
                updated_at = excluded.updated_at
            """,
            (
                controls.user_id,
                controls.status,
                controls.penalty_points,
                to_iso(controls.cooldown_until),
                controls.cooldown_reason,
                to_iso(utc_now()),
            ),
        )

    def insert_penalty(self, penalty: SellerPenalty):
        self.adapter.execute(
            """
            INSERT INTO seller_penalties (
                id, seller_id, penalty_type, severity, points, reason, evidence, applied_by, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                penalty.id,
                penalty.seller_id,
                penalty.penalty_type,
                penalty.severity,
                penalty.points,
                penalty.reason,
                json.dumps(penalty.evidence) if penalty.evidence is not None else None,
                penalty.applied_by,
                to_iso(penalty.created_at or utc_now()),
            ),
        )

    def list_penalties(self, seller_id: str) -> List[SellerPenalty]:
        rows = self.adapter.fetch_all(
            "SELECT * FROM seller_penalties WHERE seller_id = ? ORDER BY created_at", (seller_id,)
        )
        return [
            SellerPenalty(
                id=r["id"],
                seller_id=r["seller_id"],
                penalty_type=r["penalty_type"],
                severity=r["severity"],
                points=r["points"],
                reason=r["reason"],
                evidence=json.loads(r["evidence"]) if r["evidence"] else None,
                applied_by=r["applied_by"],
                created_at=parse_iso(r["created_at"]),
            )
            for r in rows
        ]
