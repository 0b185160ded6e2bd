"""
Realtime - room-based event fan-out for auction updates.

The core publishes through a generic `publish(room, event, payload)`
interface; transports (the WebSocket endpoint, tests, a message broker)
subscribe callbacks to rooms.

Rooms:
    auction:{auction_id}                    everyone watching an auction
    auction:{auction_id}:user:{bidder_id}   one bidder's private channel

Events: bid_accepted, outbid, auction_extended, auction_finalized.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from bidengine.utils.logger import get_logger

logger = get_logger("realtime")

# (room, event, payload)
DeliverFn = Callable[[str, str, Dict[str, Any]], None]


# =============================================================================
# Events & Rooms
# =============================================================================

EVENT_BID_ACCEPTED = "bid_accepted"
EVENT_OUTBID = "outbid"
EVENT_AUCTION_EXTENDED = "auction_extended"
EVENT_AUCTION_FINALIZED = "auction_finalized"


def auction_room(auction_id: str) -> str:
    return f"auction:{auction_id}"


def bidder_room(auction_id: str, bidder_id: str) -> str:
    return f"auction:{auction_id}:user:{bidder_id}"


class Publisher(Protocol):
    """Anything the core can push events into."""

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        ...


# =============================================================================
# Room Broker
# =============================================================================


@dataclass
class RoomBroker:
    """
    In-process pub/sub keyed by room name.

    Features:
    - join/leave per subscriber, leave_all on disconnect
    - Thread-safe (publishers run on request worker threads)
    - Delivery failures are logged and skipped
    """
    _rooms: Dict[str, Dict[str, DeliverFn]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def join(self, room: str, subscriber_id: str, deliver: DeliverFn) -> None:
        with self._lock:
            self._rooms.setdefault(room, {})[subscriber_id] = deliver
        logger.debug(f"{subscriber_id} joined {room}")

    def leave(self, room: str, subscriber_id: str) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.pop(subscriber_id, None)
            if not members:
                del self._rooms[room]
        logger.debug(f"{subscriber_id} left {room}")

    def leave_all(self, subscriber_id: str) -> int:
        """Remove a subscriber from every room. Returns rooms left."""
        with self._lock:
            rooms = [r for r, members in self._rooms.items() if subscriber_id in members]
        for room in rooms:
            self.leave(room, subscriber_id)
        return len(rooms)

    def members(self, room: str) -> Set[str]:
        with self._lock:
            return set(self._rooms.get(room, {}))

    def rooms_of(self, subscriber_id: str) -> List[str]:
        with self._lock:
            return sorted(r for r, members in self._rooms.items() if subscriber_id in members)

    def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every member of a room.

        Returns:
            Number of subscribers it was delivered to
        """
        with self._lock:
            targets = list(self._rooms.get(room, {}).items())

        delivered = 0
        for subscriber_id, deliver in targets:
            try:
                deliver(room, event, payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Delivery of {event} to {subscriber_id} failed: {e}")

        logger.debug(f"Published {event} to {room} ({delivered}/{len(targets)})")
        return delivered


class AsyncQueueSink:
    """
    Bridges synchronous publishes onto an asyncio queue owned by a loop.

    Publishers run on worker threads; the WebSocket task awaits the queue
    and forwards {"event", "data"} frames to its client.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: Optional[asyncio.Queue] = None):
        self.loop = loop
        self.queue = queue if queue is not None else asyncio.Queue()

    def __call__(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "data": payload}
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)


# =============================================================================
# Auction Events
# =============================================================================


class AuctionEvents:
    """Typed emitters for the auction rooms."""

    def __init__(self, publisher: Publisher):
        self.publisher = publisher

    def emit_bid_accepted(self, auction_id: str, payload: Dict[str, Any]) -> int:
        return self.publisher.publish(auction_room(auction_id), EVENT_BID_ACCEPTED, payload)

    def emit_outbid(self, auction_id: str, bidder_id: str, payload: Dict[str, Any]) -> int:
        return self.publisher.publish(bidder_room(auction_id, bidder_id), EVENT_OUTBID, payload)

    def emit_auction_extended(self, auction_id: str, payload: Dict[str, Any]) -> int:
        return self.publisher.publish(auction_room(auction_id), EVENT_AUCTION_EXTENDED, payload)

    def emit_auction_finalized(self, auction_id: str, payload: Dict[str, Any]) -> int:
        return self.publisher.publish(auction_room(auction_id), EVENT_AUCTION_FINALIZED, payload)
