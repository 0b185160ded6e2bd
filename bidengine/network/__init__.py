"""
Network Module - outbound escrow calls and realtime fan-out.
"""

from bidengine.network.escrow import EscrowClient, EscrowReleaseResult
from bidengine.network.realtime import (
    AsyncQueueSink,
    AuctionEvents,
    Publisher,
    RoomBroker,
    auction_room,
    bidder_room,
    EVENT_BID_ACCEPTED,
    EVENT_OUTBID,
    EVENT_AUCTION_EXTENDED,
    EVENT_AUCTION_FINALIZED,
)

__all__ = [
    # Escrow
    "EscrowClient",
    "EscrowReleaseResult",
    # Realtime
    "AsyncQueueSink",
    "AuctionEvents",
    "Publisher",
    "RoomBroker",
    "auction_room",
    "bidder_room",
    "EVENT_BID_ACCEPTED",
    "EVENT_OUTBID",
    "EVENT_AUCTION_EXTENDED",
    "EVENT_AUCTION_FINALIZED",
]
