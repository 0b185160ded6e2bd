"""
Hashing primitives for the bid ledger.

The bid ledger is an append-only hash chain: every accepted bid commits
to the previous entry of the same auction, so any edit, deletion or
reordering of history changes every later hash.

    hash_n = SHA256(hash_{n-1} || auction_id || bid_id || bidder_id || amount || timestamp)

The first entry of an auction has no predecessor and contributes the
empty string in place of hash_{n-1}.
"""

import hashlib
import secrets
from typing import Optional


# =============================================================================
# Hashing
# =============================================================================


def sha256_hex(data: bytes) -> str:
    """Compute SHA-256 hash as lowercase hex."""
    return hashlib.sha256(data).hexdigest()


def compute_chain_hash(
    prev_hash: Optional[str],
    auction_id: str,
    bid_id: str,
    bidder_id: str,
    amount: str,
    timestamp: str,
) -> str:
    """
    Compute the hash of a bid ledger entry.

    Args:
        prev_hash: Hash of the previous entry for the auction (None for first)
        auction_id: Auction identifier
        bid_id: Accepted bid identifier
        bidder_id: Bidder identifier
        amount: Canonical amount text (see utils.validation.format_amount)
        timestamp: ISO-8601 timestamp of the entry

    Returns:
        Hex-encoded SHA-256 digest
    """
    payload = f"{prev_hash or ''}{auction_id}{bid_id}{bidder_id}{amount}{timestamp}"
    return sha256_hex(payload.encode("utf-8"))


# =============================================================================
# Identifiers
# =============================================================================


def new_id() -> str:
    """Random 128-bit identifier as 32 hex characters."""
    return secrets.token_hex(16)


__all__ = [
    "sha256_hex",
    "compute_chain_hash",
    "new_id",
]
