"""
Bid Acceptance - the state transition that turns a bid request into an
accepted bid.

Conceptual Background:
---------------------
A bid passes through these stages; each one may end the request:

    1. input checks          bidder present, amount a positive number
    2. risk gate             blocked / limited-in-cooldown bidders rejected
    3. idempotency replay    a known (key, auction, bidder) returns its
                             stored response untouched
    4. pre-check             auction biddable, increment law on this read
    --- one write transaction (BEGIN IMMEDIATE) --------------------------
    5. re-check              auction re-read, state and increment law
                             re-validated against the fresh price
    6. previous leader       highest active bidder before this bid
    7. insert bid
    8. advance price         current_price = amount, highest_bid_id = bid
    9. ledger append         hash-chained onto the auction's last entry
   10. idempotency record    inside a savepoint; failure only logged
    --- commit --------------------------------------------------------------
   11. publish               bid_accepted to the auction room, outbid to
                             the previous leader (+ notification row)
   12. respond               {auctionId, bidId, amount}

SQLite admits one writer at a time, so steps 5-10 run serially across
all requests: two bidders can no longer both pass validation against the
same price, and the ledger cannot fork. Failures inside the transaction
roll back every write made by the request.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from bidengine.core.auction.bid_ledger import BidLedger
from bidengine.core.auction.stats import compute_bidding_stats
from bidengine.core.auction.validator import (
    AuctionStateValidator,
    check_auction_state,
    validate_increment_rules,
)
from bidengine.core.errors import (
    AuthError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    require,
)
from bidengine.core.records import Bid, to_iso, utc_now
from bidengine.crypto import new_id
from bidengine.network.realtime import AuctionEvents
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import (
    amount_to_json,
    format_amount,
    to_decimal,
    validate_amount,
    validate_id,
    validate_idempotency_key,
)

logger = get_logger("auction.bidding")

BID_STATUS_ACTIVE = "active"

OUTBID_TITLE = "You have been outbid"
OUTBID_MESSAGE = "Another bidder has placed a higher bid. Place a higher bid to stay in the lead."


@dataclass(frozen=True)
class BidResult:
    """Response of a place-bid call."""
    status_code: int
    body: Dict[str, Any]
    replayed: bool = False


class BidAcceptance:
    """
    Validates and records bids.

    Args:
        storage: StorageManager
        risk_gate: SellerRiskGate
        events: AuctionEvents for realtime publishing (optional)
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        storage,
        risk_gate,
        events: Optional[AuctionEvents] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.risk_gate = risk_gate
        self.events = events
        self.clock = clock
        self.validator = AuctionStateValidator(storage, clock=clock)
        self.ledger = BidLedger(storage)

    def place_bid(
        self,
        auction_id: str,
        bidder_id: Optional[str],
        amount: Any,
        idempotency_key: Optional[str] = None,
    ) -> BidResult:
        """
        Place a bid.

        Raises:
            AuthError: no bidder
            ValidationError: bad amount / key, increment law violated
            RestrictionError: bidder blocked or in cooldown
            NotFoundError: unknown auction
            InvalidStateError: auction not accepting bids
            InternalError: storage failure while recording the bid
        """
        # 1. Input checks
        if not bidder_id:
            raise AuthError("Authentication required")
        require(validate_amount(amount))
        require(validate_id(auction_id, "auction_id"))
        if idempotency_key is not None:
            require(validate_idempotency_key(idempotency_key))
        amount = to_decimal(amount)

        # 2. Risk gate
        self.risk_gate.ensure_allowed(bidder_id)

        # 3. Idempotency replay
        if idempotency_key:
            replay = self._replay(idempotency_key, auction_id, bidder_id)
            if replay is not None:
                return replay

        # 4. Pre-check against the first read
        try:
            auction = self.validator.validate_auction_state(auction_id)
            validate_increment_rules(auction.effective_price, amount, auction.effective_increment)
        except (ValidationError, InvalidStateError):
            # A concurrent retry with the same key may have committed since step 3
            if idempotency_key:
                replay = self._replay(idempotency_key, auction_id, bidder_id)
                if replay is not None:
                    return replay
            raise

        # 5-10. Serialized write
        try:
            with self.storage.transaction():
                if idempotency_key:
                    replay = self._replay(idempotency_key, auction_id, bidder_id)
                    if replay is not None:
                        return replay

                fresh = self.storage.get_auction(auction_id)
                if fresh is None:
                    raise NotFoundError(f"Auction {auction_id} not found")
                check_auction_state(fresh, self.clock())
                validate_increment_rules(fresh.effective_price, amount, fresh.effective_increment)

                previous = self.storage.highest_active_bid(auction_id)
                previous_bidder = previous.bidder_id if previous else None

                now = self.clock()
                bid_id = new_id()
                self.storage.insert_bid(
                    Bid(bid_id, auction_id, bidder_id, amount, BID_STATUS_ACTIVE, now)
                )
                self.storage.update_auction_price(auction_id, amount, bid_id)
                self.ledger.append(auction_id, bid_id, bidder_id, format_amount(amount), to_iso(now))

                body = {"auctionId": auction_id, "bidId": bid_id, "amount": amount_to_json(amount)}
                if idempotency_key:
                    self._remember(idempotency_key, auction_id, bidder_id, body)
        except sqlite3.Error as e:
            logger.error(f"Failed to record bid on {auction_id} by {bidder_id}: {e}")
            raise InternalError("Failed to record bid") from e

        logger.info(f"Bid {bid_id[:8]} accepted: {auction_id} {bidder_id} -> {format_amount(amount)}")

        # 11. Publish
        self._publish(auction_id, bidder_id, bid_id, amount, previous_bidder)

        # 12. Respond
        return BidResult(200, body)

    # =========================================================================
    # Idempotency
    # =========================================================================

    def _replay(self, key: str, auction_id: str, bidder_id: str) -> Optional[BidResult]:
        stored = self.storage.get_bid_request(key, auction_id, bidder_id)
        if stored is None:
            return None
        status_code, response = stored
        logger.info(f"Replaying idempotent bid {key} on {auction_id} for {bidder_id}")
        return BidResult(status_code, json.loads(response), replayed=True)

    def _remember(self, key: str, auction_id: str, bidder_id: str, body: Dict[str, Any]):
        """Persist the canonical response; the bid stands even if this fails."""
        try:
            with self.storage.savepoint("bid_request"):
                self.storage.save_bid_request(key, auction_id, bidder_id, 200, json.dumps(body))
        except sqlite3.Error as e:
            logger.error(f"Failed to store idempotency record {key} for {auction_id}: {e}")

    # =========================================================================
    # Notifications
    # =========================================================================

    def _publish(
        self,
        auction_id: str,
        bidder_id: str,
        bid_id: str,
        amount: Decimal,
        previous_bidder: Optional[str],
    ):
        outbid = previous_bidder is not None and previous_bidder != bidder_id

        if self.events is not None:
            stats = None
            try:
                stats = compute_bidding_stats(self.storage, auction_id).to_dict()
            except Exception as e:
                logger.error(f"Live stats for {auction_id} failed: {e}")

            try:
                self.events.emit_bid_accepted(
                    auction_id,
                    {
                        "auctionId": auction_id,
                        "bidId": bid_id,
                        "amount": amount_to_json(amount),
                        "bidderId": bidder_id,
                        "bidding_stats": stats,
                    },
                )
                if outbid:
                    self.events.emit_outbid(
                        auction_id,
                        previous_bidder,
                        {
                            "auctionId": auction_id,
                            "previousBidderId": previous_bidder,
                            "newBidId": bid_id,
                            "newAmount": amount_to_json(amount),
                            "bidding_stats": stats,
                        },
                    )
            except Exception as e:
                logger.error(f"Publishing bid events for {auction_id} failed: {e}")

        if outbid:
            try:
                self.storage.insert_notification(
                    previous_bidder, "bid_outbid", OUTBID_TITLE, OUTBID_MESSAGE, auction_id
                )
            except sqlite3.Error as e:
                logger.error(f"Failed to insert outbid notification for {previous_bidder}: {e}")
