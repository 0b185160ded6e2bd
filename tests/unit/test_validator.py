"""
Unit tests for auction state and increment validation.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from bidengine.core.auction import AuctionStateValidator, validate_increment_rules
from bidengine.core.errors import InvalidStateError, NotFoundError, ValidationError


# =============================================================================
# Increment Law Tests
# =============================================================================


class TestIncrementRules:
    """Tests for validate_increment_rules."""

    def test_whole_increment_accepted(self):
        """1000 -> 1200 with increment 100 is accepted."""
        validate_increment_rules(Decimal("1000"), Decimal("1200"), Decimal("100"))

    def test_partial_increment_rejected(self):
        """1000 -> 1150 with increment 100 is rejected."""
        with pytest.raises(ValidationError):
            validate_increment_rules(Decimal("1000"), Decimal("1150"), Decimal("100"))

    def test_equal_amount_rejected(self):
        """A bid equal to the current price is rejected."""
        with pytest.raises(ValidationError):
            validate_increment_rules(Decimal("1000"), Decimal("1000"), Decimal("100"))

    def test_lower_amount_rejected(self):
        """A bid below the current price is rejected even on an increment boundary."""
        with pytest.raises(ValidationError):
            validate_increment_rules(Decimal("1000"), Decimal("900"), Decimal("100"))

    def test_fractional_increment(self):
        """Fractional increments use exact arithmetic."""
        validate_increment_rules(Decimal("10.5"), Decimal("11.5"), Decimal("0.5"))
        with pytest.raises(ValidationError):
            validate_increment_rules(Decimal("10.5"), Decimal("11.2"), Decimal("0.5"))

    def test_non_positive_increment_rejected(self):
        """Zero increment is a validation error, not a division error."""
        with pytest.raises(ValidationError):
            validate_increment_rules(Decimal("1000"), Decimal("1100"), Decimal("0"))

    def test_accepts_plain_numbers(self):
        """ints are converted to Decimal."""
        validate_increment_rules(1000, 1300, 100)

    def test_error_carries_status(self):
        """Increment violations map to HTTP 400."""
        with pytest.raises(ValidationError) as exc:
            validate_increment_rules(Decimal("1000"), Decimal("1150"), Decimal("100"))
        assert exc.value.status_code == 400


# =============================================================================
# Auction State Tests
# =============================================================================


class TestAuctionState:
    """Tests for AuctionStateValidator.validate_auction_state."""

    def test_active_auction_returned(self, storage, clock, make_auction):
        """An active auction inside its window is returned."""
        make_auction("a1")
        auction = AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")
        assert auction.id == "a1"
        assert auction.current_price == Decimal("1000")

    def test_live_status_accepted(self, storage, clock, make_auction):
        """'live' is as biddable as 'active'."""
        make_auction("a1", status="live")
        AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")

    def test_missing_auction(self, storage, clock):
        """Unknown auctions raise NotFoundError."""
        with pytest.raises(NotFoundError):
            AuctionStateValidator(storage, clock=clock).validate_auction_state("nope")

    @pytest.mark.parametrize("status", ["scheduled", "ended", "awaiting_funds", "completed"])
    def test_non_biddable_status(self, storage, clock, make_auction, status):
        """Statuses other than active/live are rejected."""
        make_auction("a1", status=status)
        with pytest.raises(InvalidStateError):
            AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")

    def test_before_start(self, storage, clock, make_auction):
        """Bidding before start_date is rejected."""
        make_auction("a1", start_offset=timedelta(minutes=5))
        with pytest.raises(InvalidStateError):
            AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")

    def test_at_end_rejected(self, storage, clock, make_auction):
        """now == end_date counts as ended."""
        make_auction("a1", end_offset=timedelta(0))
        with pytest.raises(InvalidStateError):
            AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")

    def test_invalid_state_is_conflict(self, storage, clock, make_auction):
        """Invalid state maps to HTTP 409."""
        make_auction("a1", status="ended")
        with pytest.raises(InvalidStateError) as exc:
            AuctionStateValidator(storage, clock=clock).validate_auction_state("a1")
        assert exc.value.status_code == 409
