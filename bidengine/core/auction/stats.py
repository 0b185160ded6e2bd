"""
Live bidding statistics for an auction, derived on demand from its active
bids. Read-only.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from bidengine.core.records import to_iso
from bidengine.utils.validation import amount_to_json

# Shortest span used for the velocity denominator (one second, in minutes)
MIN_SPAN_SECONDS = 1


@dataclass(frozen=True)
class BiddingStats:
    """Snapshot of an auction's bidding activity."""
    highest_bid: Decimal = Decimal("0")
    highest_bidder: Optional[str] = None
    total_bids: int = 0
    bids_per_minute: Decimal = Decimal("0")
    active_bidders: int = 0
    last_bid_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "highestBid": amount_to_json(self.highest_bid),
            "highestBidder": self.highest_bidder,
            "totalBids": self.total_bids,
            "bidsPerMinute": float(self.bids_per_minute),
            "activeBidders": self.active_bidders,
            "lastBidTime": to_iso(self.last_bid_time),
        }


def compute_bidding_stats(storage, auction_id: str) -> BiddingStats:
    """
    Compute live statistics for an auction.

    highest bid/bidder and lastBidTime come from the top bid (amount desc,
    then newest first); bidsPerMinute is totalBids over the span between
    the earliest and latest bid, floored at one second and rounded half-up
    to 2 places.
    """
    bids = storage.list_active_bids(auction_id)
    if not bids:
        return BiddingStats()

    top = bids[0]
    created = [b.created_at for b in bids]
    span_seconds = max((max(created) - min(created)).total_seconds(), MIN_SPAN_SECONDS)
    per_minute = (Decimal(len(bids)) * 60 / Decimal(str(span_seconds))).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )

    return BiddingStats(
        highest_bid=top.amount,
        highest_bidder=top.bidder_id,
        total_bids=len(bids),
        bids_per_minute=per_minute,
        active_bidders=len({b.bidder_id for b in bids}),
        last_bid_time=top.created_at,
    )
