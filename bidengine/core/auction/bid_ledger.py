"""
Bid Ledger - tamper-evident audit trail of accepted bids.

Conceptual Background:
---------------------
Every accepted bid appends one entry to its auction's chain:

    entry_n.prev_hash = entry_{n-1}.hash        (None for the first entry)
    entry_n.hash      = SHA256(prev_hash || auction_id || bid_id ||
                               bidder_id || amount || timestamp)

The chain is an audit trail, not the source of truth for price. Because
each hash commits to its predecessor, editing, deleting or reordering
any entry breaks verification from that point on.

Appends must happen inside the same write transaction that advances the
auction price; reading prev_hash and inserting outside that scope lets
two concurrent bids link to the same predecessor and fork the chain.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bidengine.core.records import BidLedgerEntry
from bidengine.crypto import compute_chain_hash
from bidengine.utils.logger import get_logger

logger = get_logger("auction.ledger")


@dataclass(frozen=True)
class ChainVerification:
    """Result of walking an auction's chain."""
    auction_id: str
    valid: bool
    length: int
    head: Optional[str] = None
    broken_at: Optional[int] = None  # index of the first bad entry
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auctionId": self.auction_id,
            "valid": self.valid,
            "length": self.length,
            "head": self.head,
            "brokenAt": self.broken_at,
            "reason": self.reason,
        }


class BidLedger:
    """Appends to and verifies per-auction hash chains."""

    def __init__(self, storage):
        self.storage = storage

    def append(
        self,
        auction_id: str,
        bid_id: str,
        bidder_id: str,
        amount: str,
        timestamp: str,
    ) -> BidLedgerEntry:
        """
        Link a new entry onto the auction's chain.

        Must be called inside the caller's write transaction.

        Args:
            amount: Canonical amount text, hashed and stored verbatim
            timestamp: ISO-8601 UTC timestamp; raised to the previous
                entry's timestamp if the clock went backwards
        """
        prev_hash = None
        last = self.storage.last_ledger_entry(auction_id)
        if last is not None:
            prev_hash, last_timestamp = last
            if timestamp < last_timestamp:
                logger.warning(f"Ledger {auction_id}: clock went back ({timestamp} < {last_timestamp})")
                timestamp = last_timestamp
        entry_hash = compute_chain_hash(prev_hash, auction_id, bid_id, bidder_id, amount, timestamp)
        seq = self.storage.insert_bid_ledger_entry(
            auction_id, bid_id, bidder_id, amount, timestamp, prev_hash, entry_hash
        )
        logger.debug(f"Ledger {auction_id}: #{seq} {entry_hash[:12]} (prev {(prev_hash or '-')[:12]})")
        return BidLedgerEntry(seq, auction_id, bid_id, bidder_id, amount, timestamp, prev_hash, entry_hash)

    def entries(self, auction_id: str) -> List[BidLedgerEntry]:
        return self.storage.list_bid_ledger(auction_id)

    def verify_chain(self, auction_id: str) -> ChainVerification:
        """
        Recompute every hash of the auction's chain in append (seq) order.

        Returns:
            ChainVerification; valid is False at the first entry whose
            prev_hash does not link or whose hash does not recompute
        """
        entries = self.entries(auction_id)
        expected_prev: Optional[str] = None

        for index, entry in enumerate(entries):
            if entry.prev_hash != expected_prev:
                logger.warning(f"Ledger {auction_id}: broken link at entry {index}")
                return ChainVerification(
                    auction_id, False, len(entries), broken_at=index, reason="prev_hash mismatch"
                )

            recomputed = compute_chain_hash(
                entry.prev_hash,
                entry.auction_id,
                entry.bid_id,
                entry.bidder_id,
                entry.amount,
                entry.timestamp,
            )
            if recomputed != entry.hash:
                logger.warning(f"Ledger {auction_id}: hash mismatch at entry {index}")
                return ChainVerification(
                    auction_id, False, len(entries), broken_at=index, reason="hash mismatch"
                )
            expected_prev = entry.hash

        return ChainVerification(auction_id, True, len(entries), head=expected_prev)
