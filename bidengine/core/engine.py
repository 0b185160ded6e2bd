"""
Market Engine - wires storage, caches, engines and outbound clients from
one EngineConfig.

Usage:
    engine = MarketEngine(load_config())
    engine.bidding.place_bid("a1", "u1", 1200, idempotency_key="k1")
    engine.settlement.settle_auction("a1")
"""

from datetime import datetime
from typing import Callable, Optional

import httpx

from bidengine.core.auction.acceptance import BidAcceptance
from bidengine.core.auction.bid_ledger import BidLedger
from bidengine.core.auction.stats import BiddingStats, compute_bidding_stats
from bidengine.core.auction.ticker import AuctionTicker, TickReport
from bidengine.core.cache import TTLCache
from bidengine.core.commission import CommissionEngine
from bidengine.core.config import EngineConfig
from bidengine.core.errors import NotFoundError
from bidengine.core.records import utc_now
from bidengine.core.risk.seller_risk import SellerRiskGate
from bidengine.core.settlement.coordinator import SettlementCoordinator
from bidengine.core.settlement.ledger import SettlementLedger
from bidengine.core.storage.storage_manager import StorageManager
from bidengine.network.escrow import EscrowClient
from bidengine.network.realtime import AuctionEvents, RoomBroker
from bidengine.utils.logger import get_logger

logger = get_logger("engine")


class MarketEngine:
    """
    Container for one running engine instance.

    Args:
        config: Engine configuration
        clock: Returns the current UTC datetime (shared by every engine)
        broker: Realtime broker (a fresh RoomBroker by default)
        escrow_transport: httpx transport for the escrow client (tests)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        broker: Optional[RoomBroker] = None,
        escrow_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or EngineConfig()
        self.clock = clock

        self.storage = StorageManager(self.config.data_dir, self.config.db_name)
        self.broker = broker if broker is not None else RoomBroker()
        self.events = AuctionEvents(self.broker)

        self.risk = SellerRiskGate(
            self.storage, cache=TTLCache(ttl=self.config.risk_cache_ttl), clock=clock
        )
        self.commission = CommissionEngine(
            self.storage, cache=TTLCache(ttl=self.config.commission_cache_ttl)
        )
        self.bid_ledger = BidLedger(self.storage)
        self.bidding = BidAcceptance(self.storage, self.risk, events=self.events, clock=clock)
        self.ticker = AuctionTicker(self.storage, events=self.events, clock=clock)

        self.escrow = EscrowClient(
            self.config.escrow_base_url,
            api_key=self.config.escrow_api_key,
            timeout=self.config.escrow_timeout,
            transport=escrow_transport,
        )
        self.ledger = SettlementLedger(self.storage, currency=self.config.currency, clock=clock)
        self.settlement = SettlementCoordinator(
            self.storage,
            self.commission,
            self.ledger,
            self.escrow,
            currency=self.config.currency,
            clock=clock,
        )

        logger.info(f"MarketEngine ready (db={self.storage.db_path})")

    def live_stats(self, auction_id: str) -> BiddingStats:
        """Live stats for an existing auction."""
        if self.storage.get_auction(auction_id) is None:
            raise NotFoundError(f"Auction {auction_id} not found")
        return compute_bidding_stats(self.storage, auction_id)

    def tick(self) -> TickReport:
        return self.ticker.run_tick(
            self.config.extension_threshold_seconds,
            self.config.extension_seconds,
        )

    def close(self):
        self.storage.close()
