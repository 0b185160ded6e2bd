"""
Unit tests for bid acceptance.

Tests cover:
1. Happy path: price advance, ledger append, response body
2. Input, state and increment rejections
3. Risk gate
4. Idempotent replay
5. Outbid events and notifications
6. Rollback on storage failure
"""

import sqlite3
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from bidengine.core.auction import BidAcceptance, BidLedger
from bidengine.core.errors import (
    AuthError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    RestrictionError,
    ValidationError,
)
from bidengine.core.records import UserControls
from bidengine.core.risk import SellerRiskGate
from bidengine.network.realtime import AuctionEvents, RoomBroker, auction_room, bidder_room


class Recorder:
    """Collects (room, event, payload) deliveries."""

    def __init__(self):
        self.events = []

    def __call__(self, room, event, payload):
        self.events.append((room, event, payload))

    def named(self, event):
        return [e for e in self.events if e[1] == event]


@pytest.fixture
def broker():
    return RoomBroker()


@pytest.fixture
def bidding(storage, clock, broker):
    gate = SellerRiskGate(storage, clock=clock)
    return BidAcceptance(storage, gate, events=AuctionEvents(broker), clock=clock)


# =============================================================================
# Acceptance
# =============================================================================


class TestAcceptBid:
    """Tests for the successful path."""

    def test_accepts_and_advances_price(self, storage, bidding, make_auction):
        make_auction("a1")
        result = bidding.place_bid("a1", "u1", 1200)
        assert result.status_code == 200
        assert not result.replayed
        assert result.body["auctionId"] == "a1"
        assert result.body["amount"] == 1200

        auction = storage.get_auction("a1")
        assert auction.current_price == Decimal("1200")
        assert auction.highest_bid_id == result.body["bidId"]
        assert storage.count_bids("a1") == 1

    def test_appends_to_ledger(self, storage, bidding, make_auction):
        make_auction("a1")
        first = bidding.place_bid("a1", "u1", 1100)
        second = bidding.place_bid("a1", "u2", 1200)

        entries = BidLedger(storage).entries("a1")
        assert [e.bid_id for e in entries] == [first.body["bidId"], second.body["bidId"]]
        assert entries[0].amount == "1100"
        assert entries[1].prev_hash == entries[0].hash
        assert BidLedger(storage).verify_chain("a1").valid

    def test_chain_survives_clock_stepping_back(self, storage, bidding, make_auction, clock):
        """A bid accepted after the clock moved backwards still links and verifies."""
        make_auction("a1")
        bidding.place_bid("a1", "u1", 1100)
        clock.advance(seconds=-2)
        bidding.place_bid("a1", "u2", 1200)

        ledger = BidLedger(storage)
        result = ledger.verify_chain("a1")
        assert result.valid, result.to_dict()
        assert result.length == 2

        entries = ledger.entries("a1")
        assert entries[1].prev_hash == entries[0].hash
        assert entries[1].timestamp >= entries[0].timestamp

    def test_starting_price_used_without_current(self, storage, bidding, make_auction):
        make_auction("a1", current_price=None, starting_price="500", increment="50")
        assert bidding.place_bid("a1", "u1", 550).status_code == 200
        with pytest.raises(ValidationError):
            bidding.place_bid("a1", "u2", 575)

    def test_default_increment(self, bidding, make_auction):
        """Missing increment falls back to 100."""
        make_auction("a1", increment=None)
        with pytest.raises(ValidationError):
            bidding.place_bid("a1", "u1", 1050)
        assert bidding.place_bid("a1", "u1", 1100).status_code == 200

    def test_fractional_amount(self, storage, bidding, make_auction):
        make_auction("a1", current_price="10", increment="0.25")
        result = bidding.place_bid("a1", "u1", 10.75)
        assert result.body["amount"] == 10.75
        assert storage.get_auction("a1").current_price == Decimal("10.75")


# =============================================================================
# Rejections
# =============================================================================


class TestRejections:
    """Tests for requests that must not create a bid."""

    def test_missing_bidder(self, bidding, make_auction):
        make_auction("a1")
        with pytest.raises(AuthError):
            bidding.place_bid("a1", None, 1200)

    @pytest.mark.parametrize("amount", [None, "1200", 0, -100, True])
    def test_bad_amount(self, storage, bidding, make_auction, amount):
        make_auction("a1")
        with pytest.raises(ValidationError):
            bidding.place_bid("a1", "u1", amount)
        assert storage.count_bids("a1") == 0

    def test_increment_violation(self, storage, bidding, make_auction):
        """1000 -> 1150 with increment 100 is rejected."""
        make_auction("a1")
        with pytest.raises(ValidationError):
            bidding.place_bid("a1", "u1", 1150)
        assert storage.count_bids("a1") == 0
        assert storage.get_auction("a1").current_price == Decimal("1000")

    def test_recheck_uses_fresh_zero_price(self, storage, bidding, make_auction, monkeypatch):
        """The in-transaction check uses the fresh read even when its price is 0."""
        make_auction("a1", increment="300")
        original = storage.get_auction
        reads = []

        def reset_after_first_read(auction_id):
            auction = original(auction_id)
            reads.append(auction_id)
            if auction is not None and len(reads) > 1:
                auction = replace(auction, current_price=Decimal("0"), starting_price=None)
            return auction

        monkeypatch.setattr(storage, "get_auction", reset_after_first_read)

        # 1300 is one increment above 1000 but not a whole number of increments above 0
        with pytest.raises(ValidationError):
            bidding.place_bid("a1", "u1", 1300)
        assert len(reads) == 2
        assert storage.count_bids("a1") == 0

    def test_unknown_auction(self, bidding):
        with pytest.raises(NotFoundError):
            bidding.place_bid("missing", "u1", 1200)

    def test_ended_auction(self, storage, bidding, make_auction):
        make_auction("a1", status="ended")
        with pytest.raises(InvalidStateError):
            bidding.place_bid("a1", "u1", 1200)
        assert storage.count_bids("a1") == 0

    def test_past_end_date(self, bidding, make_auction, clock):
        make_auction("a1")
        clock.advance(hours=2)
        with pytest.raises(InvalidStateError):
            bidding.place_bid("a1", "u1", 1200)

    def test_blocked_bidder(self, storage, bidding, make_auction):
        """A blocked bidder gets 403 and no Bid row is created."""
        make_auction("a1")
        storage.upsert_user_controls(UserControls("u1", status="blocked"))
        with pytest.raises(RestrictionError) as exc:
            bidding.place_bid("a1", "u1", 1200)
        assert exc.value.status_code == 403
        assert storage.count_bids("a1") == 0

    def test_limited_in_cooldown(self, storage, bidding, make_auction, clock):
        make_auction("a1")
        storage.upsert_user_controls(
            UserControls("u1", status="limited", cooldown_until=clock() + timedelta(days=1))
        )
        with pytest.raises(RestrictionError):
            bidding.place_bid("a1", "u1", 1200)


# =============================================================================
# Idempotency
# =============================================================================


class TestIdempotency:
    """Tests for Idempotency-Key replay."""

    def test_replay_returns_same_body(self, storage, bidding, make_auction):
        """Same key twice -> one Bid row, identical bodies."""
        make_auction("a1")
        first = bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        second = bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        assert second.replayed
        assert second.status_code == first.status_code == 200
        assert second.body == first.body
        assert storage.count_bids("a1") == 1

    def test_replay_ignores_new_amount(self, storage, bidding, make_auction):
        """The stored response wins even if the retry changed the amount."""
        make_auction("a1")
        first = bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        second = bidding.place_bid("a1", "u1", 1500, idempotency_key="k1")
        assert second.body == first.body
        assert storage.get_auction("a1").current_price == Decimal("1200")

    def test_replay_after_auction_ended(self, storage, bidding, make_auction):
        make_auction("a1")
        first = bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        storage.set_auction_status("a1", "ended")
        assert bidding.place_bid("a1", "u1", 1200, idempotency_key="k1").body == first.body

    def test_key_scoped_to_bidder(self, storage, bidding, make_auction):
        make_auction("a1")
        bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        other = bidding.place_bid("a1", "u2", 1300, idempotency_key="k1")
        assert not other.replayed
        assert storage.count_bids("a1") == 2

    def test_record_failure_keeps_bid(self, storage, bidding, make_auction, monkeypatch):
        """A failed idempotency write is logged; the bid stands."""
        make_auction("a1")

        def fail(*args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(storage, "save_bid_request", fail)
        result = bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
        assert result.status_code == 200
        assert storage.count_bids("a1") == 1
        assert storage.get_bid_request("k1", "a1", "u1") is None


# =============================================================================
# Events & Notifications
# =============================================================================


class TestEvents:
    """Tests for realtime publishing and outbid notifications."""

    def test_bid_accepted_broadcast(self, broker, bidding, make_auction):
        make_auction("a1")
        watcher = Recorder()
        broker.join(auction_room("a1"), "w1", watcher)

        result = bidding.place_bid("a1", "u1", 1200)

        (room, _, payload), = watcher.named("bid_accepted")
        assert room == "auction:a1"
        assert payload["bidId"] == result.body["bidId"]
        assert payload["amount"] == 1200
        assert payload["bidding_stats"]["totalBids"] == 1
        assert payload["bidding_stats"]["highestBidder"] == "u1"

    def test_outbid_to_previous_leader(self, storage, broker, bidding, make_auction):
        make_auction("a1")
        u1 = Recorder()
        broker.join(bidder_room("a1", "u1"), "s-u1", u1)

        bidding.place_bid("a1", "u1", 1100)
        second = bidding.place_bid("a1", "u2", 1200)

        (room, _, payload), = u1.named("outbid")
        assert room == "auction:a1:user:u1"
        assert payload["previousBidderId"] == "u1"
        assert payload["newBidId"] == second.body["bidId"]
        assert payload["newAmount"] == 1200

        notes = storage.list_notifications("u1")
        assert len(notes) == 1
        assert notes[0]["type"] == "bid_outbid"
        assert notes[0]["auction_id"] == "a1"
        assert storage.list_notifications("u2") == []

    def test_no_outbid_when_raising_own_bid(self, storage, broker, bidding, make_auction):
        make_auction("a1")
        u1 = Recorder()
        broker.join(bidder_room("a1", "u1"), "s-u1", u1)
        bidding.place_bid("a1", "u1", 1100)
        bidding.place_bid("a1", "u1", 1200)
        assert u1.named("outbid") == []
        assert storage.list_notifications("u1") == []

    def test_publish_failure_does_not_fail_bid(self, storage, broker, bidding, make_auction):
        make_auction("a1")

        def explode(room, event, payload):
            raise RuntimeError("socket gone")

        broker.join(auction_room("a1"), "bad", explode)
        assert bidding.place_bid("a1", "u1", 1200).status_code == 200
        assert storage.count_bids("a1") == 1


# =============================================================================
# Atomicity
# =============================================================================


class TestAtomicity:
    """Tests for rollback of partial writes."""

    def test_ledger_failure_rolls_back(self, storage, bidding, make_auction, monkeypatch):
        """If the ledger append fails, no bid and no price change remain."""
        make_auction("a1")

        def fail(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(storage, "insert_bid_ledger_entry", fail)
        with pytest.raises(InternalError):
            bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")

        assert storage.count_bids("a1") == 0
        assert storage.get_auction("a1").current_price == Decimal("1000")
        assert storage.get_bid_request("k1", "a1", "u1") is None
