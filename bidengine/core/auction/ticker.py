"""
Auction Ticker - periodic auto-extension and finalization.

Each tick looks at active/live auctions ending within the extension
threshold:

- Still running, inside the threshold, with at least one bid:
  end_date += extension (anti-sniping), publish auction_extended.
- Already past end_date:
  no bids   -> status ended, no winner
  with bids -> status ended, winner = highest bid (amount desc, newest
               first), final_price = that amount; publish
               auction_finalized and notify the winner (bid_won).

Payout records are created by settlement, not here.
"""

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from bidengine.core.auction.stats import compute_bidding_stats
from bidengine.core.records import AuctionStatus, to_iso, utc_now
from bidengine.network.realtime import AuctionEvents
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import amount_to_json

logger = get_logger("auction.ticker")

DEFAULT_EXTENSION_THRESHOLD_SECONDS = 60
DEFAULT_EXTENSION_SECONDS = 60

WON_TITLE = "You won the auction"
WON_MESSAGE = (
    "Congratulations! You have won this auction. "
    "Please proceed to payment to complete your purchase."
)


@dataclass
class TickReport:
    extended: List[str] = field(default_factory=list)
    finalized: List[str] = field(default_factory=list)

    def to_dict(self):
        return {"extended": list(self.extended), "finalized": list(self.finalized)}


class AuctionTicker:
    """
    Runs auction ticks against storage.

    Args:
        storage: StorageManager
        events: AuctionEvents for realtime publishing (optional)
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        storage,
        events: Optional[AuctionEvents] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.events = events
        self.clock = clock

    def run_tick(
        self,
        extension_threshold_seconds: int = DEFAULT_EXTENSION_THRESHOLD_SECONDS,
        extension_seconds: int = DEFAULT_EXTENSION_SECONDS,
    ) -> TickReport:
        """Extend or finalize every auction that is due."""
        report = TickReport()
        now = self.clock()
        threshold = timedelta(seconds=extension_threshold_seconds)

        try:
            due = self.storage.list_running_auctions_ending_before(now + threshold)
        except sqlite3.Error as e:
            logger.error(f"Tick: failed to load due auctions: {e}")
            return report

        for auction in due:
            try:
                self._tick_one(auction.id, now, threshold, timedelta(seconds=extension_seconds), report)
            except sqlite3.Error as e:
                logger.error(f"Tick: auction {auction.id} failed: {e}")

        if report.extended or report.finalized:
            logger.info(f"Tick: extended {len(report.extended)}, finalized {len(report.finalized)}")
        return report

    def _tick_one(self, auction_id: str, now: datetime, threshold: timedelta, extension: timedelta, report: TickReport) -> bool:
        """Returns True when the auction was extended or finalized."""
        with self.storage.transaction():
            auction = self.storage.get_auction(auction_id)
            if auction is None or not auction.is_biddable_status or auction.end_date is None:
                return False

            remaining = auction.end_date - now
            bids = self.storage.list_active_bids(auction_id)
            winning = bids[0] if bids else None

            if timedelta(0) < remaining <= threshold:
                if winning is None:
                    return False
                new_end = auction.end_date + extension
                self.storage.set_auction_end_date(auction_id, new_end)
                report.extended.append(auction_id)
                action = "extended"
            elif auction.end_date <= now:
                self.storage.finalize_auction(
                    auction_id,
                    AuctionStatus.ENDED.value,
                    winning.bidder_id if winning else None,
                    winning.amount if winning else None,
                    winning.id if winning else auction.highest_bid_id,
                    now,
                )
                report.finalized.append(auction_id)
                action = "finalized"
            else:
                return False

        if action == "extended":
            logger.info(f"Auction {auction_id} extended to {to_iso(new_end)}")
            self._emit(
                "extended",
                auction_id,
                {
                    "auctionId": auction_id,
                    "previousEndDate": to_iso(auction.end_date),
                    "newEndDate": to_iso(new_end),
                },
            )
            return True

        if winning is None:
            logger.info(f"Auction {auction_id} ended without bids")
            self._emit("finalized", auction_id, {"auctionId": auction_id, "winnerId": None, "finalPrice": None})
            return True

        logger.info(f"Auction {auction_id} won by {winning.bidder_id} at {winning.amount}")
        self._emit(
            "finalized",
            auction_id,
            {
                "auctionId": auction_id,
                "winnerId": winning.bidder_id,
                "finalPrice": amount_to_json(winning.amount),
            },
        )
        try:
            self.storage.insert_notification(winning.bidder_id, "bid_won", WON_TITLE, WON_MESSAGE, auction_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to insert bid_won notification for {winning.bidder_id}: {e}")
        return True

    def _emit(self, kind: str, auction_id: str, payload: dict):
        if self.events is None:
            return
        try:
            payload["bidding_stats"] = compute_bidding_stats(self.storage, auction_id).to_dict()
        except Exception as e:
            logger.error(f"Live stats for {auction_id} failed: {e}")
            payload["bidding_stats"] = None

        try:
            if kind == "extended":
                self.events.emit_auction_extended(auction_id, payload)
            else:
                self.events.emit_auction_finalized(auction_id, payload)
        except Exception as e:
            logger.error(f"Publishing auction_{kind} for {auction_id} failed: {e}")

    def run_forever(
        self,
        interval_seconds: float,
        stop: threading.Event,
        extension_threshold_seconds: int = DEFAULT_EXTENSION_THRESHOLD_SECONDS,
        extension_seconds: int = DEFAULT_EXTENSION_SECONDS,
    ):
        """Tick every interval until `stop` is set."""
        logger.info(f"Ticker started (every {interval_seconds}s)")
        while not stop.is_set():
            self.run_tick(extension_threshold_seconds, extension_seconds)
            stop.wait(interval_seconds)
        logger.info("Ticker stopped")
