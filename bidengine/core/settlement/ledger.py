"""
Settlement Ledger - double-entry bookkeeping for completed payouts.

Conceptual Background:
---------------------
Every settled payout posts one transaction of two entries (integer cents):

    platform_clearing   debit  net_payout   balance_after = platform - net
    seller_wallet       credit net_payout   balance_after = seller + net

so that, per transaction, sum(debit) == sum(credit). Accounts are created
lazily per (owner, account_type, currency).

LedgerEntry rows are the source of truth. WalletBalance rows are a
running cache of each account's balance (credits minus debits); a failure
to update them is logged and repaired by reconcile_wallet_balances().

Posting is idempotent per payout: a payout that already has a transaction
returns it unchanged.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from bidengine.core.commission import to_cents
from bidengine.core.errors import InternalError, NotFoundError, ValidationError
from bidengine.core.records import LedgerEntry, to_iso, utc_now
from bidengine.crypto import new_id
from bidengine.utils.logger import get_logger

logger = get_logger("settlement.ledger")

OWNER_PLATFORM = "platform"
OWNER_SELLER = "seller"
ACCOUNT_PLATFORM_CLEARING = "platform_clearing"
ACCOUNT_SELLER_WALLET = "seller_wallet"


@dataclass(frozen=True)
class SettlementPosting:
    """A payout's ledger transaction."""
    payout_id: str
    transaction_id: str
    amount_cents: int
    entries: Tuple[LedgerEntry, ...] = field(default_factory=tuple)
    created: bool = True

    def to_dict(self):
        return {
            "payoutId": self.payout_id,
            "transactionId": self.transaction_id,
            "amountCents": self.amount_cents,
            "created": self.created,
        }


@dataclass(frozen=True)
class TransactionBalance:
    transaction_id: str
    debits: int
    credits: int
    entry_count: int

    @property
    def balanced(self) -> bool:
        return self.debits == self.credits


class SettlementLedger:
    """
    Posts settlements to the double-entry ledger.

    Args:
        storage: StorageManager
        currency: Default currency when a payout carries none
        clock: Returns the current UTC datetime
    """

    def __init__(self, storage, currency: str = "INR", clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.currency = currency
        self.clock = clock

    def record_settlement_for_payout(self, payout_id: str) -> Optional[SettlementPosting]:
        """
        Post the debit/credit pair for a payout.

        Returns:
            The posting (new or pre-existing), or None when net_payout <= 0

        Raises:
            NotFoundError: unknown payout
            ValidationError: payout has no seller
            InternalError: the entry pair could not be written
        """
        payout = self.storage.get_payout(payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        if not payout.seller_id:
            raise ValidationError(f"Payout {payout_id} has no seller")

        amount = to_cents(payout.net_payout)
        if amount <= 0:
            logger.info(f"Payout {payout_id}: net payout {payout.net_payout} <= 0, nothing to post")
            return None

        currency = payout.currency or self.currency

        try:
            with self.storage.transaction():
                existing = self.storage.get_ledger_entries_for_payout(payout_id)
                if existing:
                    logger.debug(f"Payout {payout_id} already posted as {existing[0].transaction_id}")
                    return SettlementPosting(
                        payout_id, existing[0].transaction_id, amount, tuple(existing), created=False
                    )

                platform = self.storage.get_or_create_ledger_account(
                    OWNER_PLATFORM, None, ACCOUNT_PLATFORM_CLEARING, currency
                )
                seller = self.storage.get_or_create_ledger_account(
                    OWNER_SELLER, payout.seller_id, ACCOUNT_SELLER_WALLET, currency
                )

                platform_balance = self.storage.get_wallet_balance(platform.id) - amount
                seller_balance = self.storage.get_wallet_balance(seller.id) + amount

                transaction_id = new_id()
                ts = to_iso(self.clock())
                entries = (
                    LedgerEntry(new_id(), transaction_id, platform.id, payout_id, amount, 0, platform_balance, ts),
                    LedgerEntry(new_id(), transaction_id, seller.id, payout_id, 0, amount, seller_balance, ts),
                )
                self.storage.insert_ledger_entries(list(entries))

                self._update_balance(platform.id, platform_balance)
                self._update_balance(seller.id, seller_balance)
        except sqlite3.Error as e:
            logger.error(f"Failed to post ledger entries for payout {payout_id}: {e}")
            raise InternalError("Failed to record settlement ledger entries") from e

        logger.info(f"Payout {payout_id} posted: tx {transaction_id[:8]}, {amount}c to seller {payout.seller_id}")
        return SettlementPosting(payout_id, transaction_id, amount, entries)

    def _update_balance(self, account_id: str, balance_cents: int):
        """Wallet balance upsert; the ledger stays authoritative if this fails."""
        try:
            with self.storage.savepoint("wallet_balance"):
                self.storage.upsert_wallet_balance(account_id, balance_cents)
        except sqlite3.Error as e:
            logger.error(f"Failed to update wallet balance for {account_id}: {e}")

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_transaction_balance(self, transaction_id: str) -> TransactionBalance:
        entries = self.storage.get_ledger_entries_for_transaction(transaction_id)
        if not entries:
            raise NotFoundError(f"Ledger transaction {transaction_id} not found")
        return TransactionBalance(
            transaction_id=transaction_id,
            debits=sum(e.debit for e in entries),
            credits=sum(e.credit for e in entries),
            entry_count=len(entries),
        )

    def reconcile_wallet_balances(self) -> Dict[str, Tuple[int, int]]:
        """
        Rebuild wallet balances from ledger entries.

        Returns:
            {account_id: (cached_balance, ledger_balance)} for every
            account whose cached balance was corrected
        """
        corrected: Dict[str, Tuple[int, int]] = {}
        with self.storage.transaction():
            for account_id, ledger_balance in self.storage.ledger_net_by_account().items():
                cached = self.storage.get_wallet_balance(account_id)
                if cached != ledger_balance:
                    self.storage.upsert_wallet_balance(account_id, ledger_balance)
                    corrected[account_id] = (cached, ledger_balance)

        if corrected:
            logger.warning(f"Reconciled {len(corrected)} wallet balance(s)")
        return corrected

    def entries_for_payout(self, payout_id: str) -> List[LedgerEntry]:
        return self.storage.get_ledger_entries_for_payout(payout_id)
