"""
Auction Module.

This module provides the bidding core:
- Auction state and increment validation
- Live bidding statistics
- The per-auction hash-chained bid ledger
- Bid acceptance
- Periodic auto-extension and finalization
"""

from bidengine.core.auction.validator import (
    AuctionStateValidator,
    check_auction_state,
    validate_increment_rules,
)

from bidengine.core.auction.stats import BiddingStats, compute_bidding_stats

from bidengine.core.auction.bid_ledger import BidLedger, ChainVerification

from bidengine.core.auction.acceptance import BidAcceptance, BidResult

from bidengine.core.auction.ticker import (
    AuctionTicker,
    TickReport,
    DEFAULT_EXTENSION_THRESHOLD_SECONDS,
    DEFAULT_EXTENSION_SECONDS,
)

__all__ = [
    # Validation
    "AuctionStateValidator",
    "check_auction_state",
    "validate_increment_rules",
    # Stats
    "BiddingStats",
    "compute_bidding_stats",
    # Ledger
    "BidLedger",
    "ChainVerification",
    # Acceptance
    "BidAcceptance",
    "BidResult",
    # Ticker
    "AuctionTicker",
    "TickReport",
    "DEFAULT_EXTENSION_THRESHOLD_SECONDS",
    "DEFAULT_EXTENSION_SECONDS",
]
