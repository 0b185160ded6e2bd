"""
Auction State Validator - is an auction biddable, and does a bid respect
its increment?

Increment law:
-------------
A bid A against current price C with increment I is accepted iff

    A > C  and  (A - C) mod I == 0

Example: C=1000, I=100 -> 1150 rejected, 1200 accepted.

Arithmetic is exact (Decimal), so fractional prices and increments such
as 0.5 behave like whole numbers do.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable

from bidengine.core.errors import InvalidStateError, NotFoundError, ValidationError
from bidengine.core.records import Auction, BIDDABLE_STATUSES, utc_now
from bidengine.utils.logger import get_logger

logger = get_logger("auction.validator")


def validate_increment_rules(
    current_price: Decimal,
    new_amount: Decimal,
    increment_amount: Decimal,
) -> None:
    """
    Check a bid amount against the increment law.

    Pure function: no I/O. Called once against the pre-check read of the
    auction and again against the read taken inside the bid transaction.

    Raises:
        ValidationError: amount not above current price, not a whole
            number of increments above it, or increment not positive
    """
    current_price = Decimal(current_price)
    new_amount = Decimal(new_amount)
    increment_amount = Decimal(increment_amount)

    if increment_amount <= 0:
        raise ValidationError(f"Invalid increment amount {increment_amount}")

    if new_amount <= current_price:
        raise ValidationError(
            f"Bid must be greater than current price {current_price}",
            details={"currentPrice": str(current_price)},
        )

    if (new_amount - current_price) % increment_amount != 0:
        raise ValidationError(
            f"Bid must increase the price in multiples of {increment_amount}",
            details={"increment": str(increment_amount)},
        )


def check_auction_state(auction: Auction, now: datetime) -> None:
    """Raise InvalidStateError unless the auction accepts bids at `now`."""
    status = (auction.status or "").lower()
    if status not in BIDDABLE_STATUSES:
        raise InvalidStateError(f"Auction is not active (status={auction.status})")

    if auction.start_date is not None and now < auction.start_date:
        raise InvalidStateError("Auction has not started yet")

    if auction.end_date is not None and now >= auction.end_date:
        raise InvalidStateError("Auction has already ended")


class AuctionStateValidator:
    """
    Loads auctions and checks that they are biddable.

    Usage:
        validator = AuctionStateValidator(storage)
        auction = validator.validate_auction_state("a1")
        validate_increment_rules(auction.effective_price, amount, auction.effective_increment)
    """

    def __init__(self, storage, clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.clock = clock

    def validate_auction_state(self, auction_id: str) -> Auction:
        """
        Load an auction and check it accepts bids now.

        Raises:
            NotFoundError: unknown auction
            InvalidStateError: status not active/live, before start_date,
                or at/after end_date
        """
        auction = self.storage.get_auction(auction_id)
        if auction is None:
            raise NotFoundError(f"Auction {auction_id} not found")

        check_auction_state(auction, self.clock())
        return auction

    validate_increment_rules = staticmethod(validate_increment_rules)
