"""
Concurrency tests for bid acceptance.

Many threads bid on the same auction at once. The write transaction must
serialize them so that:
- accepted amounts are strictly increasing in ledger order
- the hash chain never forks (one successor per entry)
- the auction price equals the last accepted amount
"""

import threading
from decimal import Decimal

import pytest

from bidengine.core.auction import BidAcceptance, BidLedger
from bidengine.core.errors import ValidationError
from bidengine.core.risk import SellerRiskGate

THREADS = 8
ATTEMPTS = 15


@pytest.fixture
def bidding(storage, clock):
    return BidAcceptance(storage, SellerRiskGate(storage, clock=clock), clock=clock)


def _run(workers):
    threads = [threading.Thread(target=w) for w in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)


class TestConcurrentBidding:
    """Tests for serialized acceptance under contention."""

    def test_same_amount_accepted_once(self, storage, bidding, make_auction):
        """N bidders racing with 1100 on a 1000 auction: exactly one wins."""
        make_auction("a1")
        accepted, rejected, errors = [], [], []
        barrier = threading.Barrier(THREADS)

        def worker(bidder):
            def run():
                barrier.wait()
                try:
                    accepted.append(bidding.place_bid("a1", bidder, 1100))
                except ValidationError:
                    rejected.append(bidder)
                except Exception as e:
                    errors.append(e)
            return run

        _run([worker(f"u{i}") for i in range(THREADS)])

        assert errors == []
        assert len(accepted) == 1
        assert len(rejected) == THREADS - 1
        assert storage.count_bids("a1") == 1
        assert storage.get_auction("a1").current_price == Decimal("1100")

    def test_price_and_chain_stay_linear(self, storage, bidding, make_auction):
        make_auction("a1")
        errors = []
        barrier = threading.Barrier(THREADS)

        def worker(bidder):
            def run():
                barrier.wait()
                for _ in range(ATTEMPTS):
                    current = storage.get_auction("a1").current_price
                    try:
                        bidding.place_bid("a1", bidder, current + 100)
                    except ValidationError:
                        pass
                    except Exception as e:
                        errors.append(e)
            return run

        _run([worker(f"u{i}") for i in range(THREADS)])

        assert errors == []
        ledger = BidLedger(storage)
        entries = ledger.entries("a1")
        amounts = [Decimal(e.amount) for e in entries]

        assert len(entries) == storage.count_bids("a1") > 0
        assert all(b > a for a, b in zip(amounts, amounts[1:]))
        assert all(b - a == 100 for a, b in zip(amounts, amounts[1:]))
        assert storage.get_auction("a1").current_price == amounts[-1]

        prevs = [e.prev_hash for e in entries]
        assert len(set(prevs)) == len(prevs)
        assert ledger.verify_chain("a1").valid

    def test_idempotency_key_race(self, storage, bidding, make_auction):
        """Concurrent retries of one request create one bid and one body."""
        make_auction("a1")
        results, errors = [], []
        barrier = threading.Barrier(THREADS)

        def run():
            barrier.wait()
            try:
                results.append(bidding.place_bid("a1", "u1", 1200, idempotency_key="retry-1"))
            except Exception as e:
                errors.append(e)

        _run([run for _ in range(THREADS)])

        assert errors == []
        assert storage.count_bids("a1") == 1
        assert len({r.body["bidId"] for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1
