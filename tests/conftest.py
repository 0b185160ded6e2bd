"""
Shared fixtures: temporary storage, a controllable clock and auction /
escrow factories.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bidengine.core.records import Auction, EscrowAccount
from bidengine.core.storage import StorageManager

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    manager = StorageManager(tmp_path / "data")
    yield manager
    manager.close()


@pytest.fixture
def make_auction(storage, clock):
    """Factory inserting an auction that is live around the clock's now."""

    def _make(
        auction_id: str = "a1",
        status: str = "active",
        current_price="1000",
        increment="100",
        starting_price=None,
        start_offset=timedelta(hours=-1),
        end_offset=timedelta(hours=1),
        seller_id: str = "seller-1",
        product_id: str = "p1",
        winner_id=None,
        final_price=None,
    ) -> Auction:
        auction = Auction(
            id=auction_id,
            status=status,
            current_price=Decimal(current_price) if current_price is not None else None,
            increment_amount=Decimal(increment) if increment is not None else None,
            starting_price=Decimal(starting_price) if starting_price is not None else None,
            start_date=clock() + start_offset if start_offset is not None else None,
            end_date=clock() + end_offset if end_offset is not None else None,
            seller_id=seller_id,
            product_id=product_id,
            winner_id=winner_id,
            final_price=Decimal(final_price) if final_price is not None else None,
        )
        storage.create_auction(auction)
        if product_id:
            storage.create_product(product_id)
        return auction

    return _make


@pytest.fixture
def fund_escrow(storage):
    """Factory inserting an escrow account for (auction, buyer)."""

    def _fund(auction_id: str, buyer_id: str, status: str = "FUNDED", escrow_id: str = None) -> EscrowAccount:
        escrow = EscrowAccount(
            id=escrow_id or f"esc-{auction_id}",
            auction_id=auction_id,
            buyer_id=buyer_id,
            status=status,
            amount_cents=0,
        )
        storage.save_escrow_account(escrow)
        return escrow

    return _fund
