"""
Settlement Coordinator - end-of-auction orchestration.

Conceptual Background:
---------------------
Settling an ended auction moves through these steps:

    1. load auction            404 if absent; 400 without winner, price
                               or seller
    2. payout lookup           completed payout -> re-post ledger and
                               answer already_completed
    3. completed auction       409 (no completed payout backs it)
    4. payout                  created pending, at most once per auction
                               (payout_reference = auction id), with the
                               fee split of the active commission settings;
                               an existing payout keeps its own split
    5. commissions             rebuilt from the payout
    6. escrow check            not FUNDED -> auction awaiting_funds,
                               answer ok=false (a valid outcome)
    7. escrow release          net to seller, fees to platform;
                               failure -> 502, nothing advanced
    8. status propagation      payout completed (+paid_at); auction
                               completed, product settled (best-effort)
    9. ledger                  double-entry posting for the payout

The sequence spans an external HTTP call, so it is not one transaction.
Instead every step can be re-run: the payout is unique per auction, a
completed payout short-circuits, the escrow reference is stable
(settle:{auction_id}) and ledger posting is idempotent. Within a process,
settlements of the same auction (and completions of the same payout) are
serialized by a per-key lock.
"""

import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from bidengine.core.cache import KeyedLocks
from bidengine.core.commission import CommissionBreakdown, to_cents
from bidengine.core.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from bidengine.core.records import AuctionStatus, EscrowStatus, Payout, PayoutStatus, utc_now
from bidengine.crypto import new_id
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import amount_to_json

logger = get_logger("settlement")

PRODUCT_SETTLED = "settled"
AWAITING_FUNDS_MESSAGE = "escrow not funded; marked auction awaiting_funds"

OUTCOME_SETTLED = "settled"
OUTCOME_ALREADY_COMPLETED = "already_completed"
OUTCOME_AWAITING_FUNDS = "awaiting_funds"


@dataclass(frozen=True)
class SettlementOutcome:
    """Result of settle_auction."""
    ok: bool
    status: str
    commissions: CommissionBreakdown
    payout_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.status == OUTCOME_AWAITING_FUNDS:
            return {
                "ok": False,
                "message": AWAITING_FUNDS_MESSAGE,
                "commissions": self.commissions.to_dict(),
            }
        body = {"ok": self.ok}
        if self.status == OUTCOME_ALREADY_COMPLETED:
            body["status"] = OUTCOME_ALREADY_COMPLETED
        body["commissions"] = self.commissions.to_dict()
        body["payoutId"] = self.payout_id
        return body


def settlement_reference(auction_id: str) -> str:
    return f"settle:{auction_id}"


def breakdown_from_payout(payout: Payout) -> CommissionBreakdown:
    """Rebuild the fee split a payout was created with (flat fee is the remainder)."""
    sale = to_cents(payout.sale_price)
    seller = to_cents(payout.commission_amount)
    buyer = to_cents(payout.buyer_commission_amount)
    net = to_cents(payout.net_payout)
    flat = sale - seller - net
    return CommissionBreakdown(
        buyer_commission=buyer,
        seller_commission=seller,
        platform_flat_cents=flat,
        total_commission=buyer + seller + flat,
        net_to_seller=net,
    )


class SettlementCoordinator:
    """
    Settles auctions and completes payouts.

    Args:
        storage: StorageManager
        commission: CommissionEngine
        ledger: SettlementLedger
        escrow: EscrowClient (or anything with the same release())
        currency: Currency recorded on new payouts
        clock: Returns the current UTC datetime
    """

    def __init__(
        self,
        storage,
        commission,
        ledger,
        escrow,
        currency: str = "INR",
        clock: Callable[[], datetime] = utc_now,
        locks: Optional[KeyedLocks] = None,
    ):
        self.storage = storage
        self.commission = commission
        self.ledger = ledger
        self.escrow = escrow
        self.currency = currency
        self.clock = clock
        self.locks = locks if locks is not None else KeyedLocks()

    # =========================================================================
    # Settle
    # =========================================================================

    def settle_auction(self, auction_id: str, actor_id: Optional[str] = None) -> SettlementOutcome:
        """
        Settle an ended auction.

        Raises:
            NotFoundError: unknown auction
            ValidationError: no winner or seller, or missing / non-positive final price
            ConflictError: auction already completed without a completed payout
            UpstreamError: escrow release failed
            InternalError: payout could not be stored or completed
        """
        with self.locks.lock_for(("auction", auction_id)):
            return self._settle(auction_id, actor_id)

    def _settle(self, auction_id: str, actor_id: Optional[str]) -> SettlementOutcome:
        auction = self.storage.get_auction(auction_id)
        if auction is None:
            raise NotFoundError(f"Auction {auction_id} not found")
        if not auction.winner_id or auction.final_price is None:
            raise ValidationError("auction has no winner or final price")
        if auction.final_price <= 0:
            raise ValidationError("invalid final price on auction")
        if not auction.seller_id:
            raise ValidationError("auction has no seller")

        payout = self.storage.get_payout_by_reference(auction_id)
        if payout is not None and payout.is_completed:
            self.ledger.record_settlement_for_payout(payout.id)
            logger.info(f"Auction {auction_id} already settled (payout {payout.id})")
            return SettlementOutcome(
                True, OUTCOME_ALREADY_COMPLETED, breakdown_from_payout(payout), payout.id
            )

        if (auction.status or "").lower() == AuctionStatus.COMPLETED.value:
            raise ConflictError("auction already completed")

        if payout is None:
            sale_cents = to_cents(auction.final_price)
            commissions = self.commission.apply_commission_rules(sale_cents, {"auctionId": auction_id})
            payout = self._create_payout(auction, sale_cents, commissions)

        # The pending payout fixes the split; later commission changes do not apply
        commissions = breakdown_from_payout(payout)

        escrow = self.storage.get_escrow_account(auction_id, auction.winner_id)
        if escrow is None or escrow.status != EscrowStatus.FUNDED.value:
            try:
                self.storage.set_auction_status(auction_id, AuctionStatus.AWAITING_FUNDS.value)
            except sqlite3.Error as e:
                logger.error(f"Failed to mark {auction_id} awaiting_funds: {e}")
            logger.warning(f"Auction {auction_id}: escrow not funded, awaiting funds")
            return SettlementOutcome(False, OUTCOME_AWAITING_FUNDS, commissions, payout.id)

        release = self.escrow.release(
            escrow.id,
            commissions.net_to_seller,
            commissions.fee_to_platform,
            settlement_reference(auction_id),
        )
        if not release or not release.ok:
            raise UpstreamError("escrow release failed", details={"details": release.to_dict() if release else None})

        try:
            self.storage.mark_payout_completed(payout.id, self.clock())
        except sqlite3.Error as e:
            logger.error(f"Escrow released but payout {payout.id} not completed: {e}")
            raise InternalError("Failed to update payout status") from e

        self._propagate_status(auction_id, auction.product_id)
        self.ledger.record_settlement_for_payout(payout.id)

        logger.info(
            f"Auction {auction_id} settled by {actor_id or 'system'}: payout {payout.id}, "
            f"net {commissions.net_to_seller}c, fees {commissions.fee_to_platform}c"
        )
        return SettlementOutcome(True, OUTCOME_SETTLED, commissions, payout.id)

    def _create_payout(self, auction, sale_cents: int, commissions: CommissionBreakdown) -> Payout:
        try:
            payout = self.storage.create_payout(
                Payout(
                    id=new_id(),
                    seller_id=auction.seller_id,
                    product_id=auction.product_id,
                    sale_price=Decimal(sale_cents) / 100,
                    commission_amount=Decimal(commissions.seller_commission) / 100,
                    buyer_commission_amount=Decimal(commissions.buyer_commission) / 100,
                    net_payout=Decimal(commissions.net_to_seller) / 100,
                    payout_reference=auction.id,
                    status=PayoutStatus.PENDING.value,
                    currency=self.currency,
                    created_at=self.clock(),
                )
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to create payout for {auction.id}: {e}")
            raise InternalError("Failed to create payout") from e

        logger.info(f"Payout {payout.id} pending for auction {auction.id}")
        return payout

    def _propagate_status(self, auction_id: str, product_id: Optional[str]):
        """Auction completed, product settled; funds have moved, so only log failures."""
        try:
            self.storage.set_auction_status(auction_id, AuctionStatus.COMPLETED.value)
        except sqlite3.Error as e:
            logger.error(f"Failed to mark auction {auction_id} completed: {e}")

        if product_id:
            try:
                self.storage.set_product_status(product_id, PRODUCT_SETTLED)
            except sqlite3.Error as e:
                logger.error(f"Failed to mark product {product_id} settled: {e}")

    # =========================================================================
    # Payouts
    # =========================================================================

    def complete_payout(self, payout_id: str) -> Dict[str, str]:
        """
        Mark a payout completed and post it to the ledger. Idempotent.

        Returns:
            {"status": "completed" | "already_completed", "payoutId": ...}
        """
        with self.locks.lock_for(("payout", payout_id)):
            payout = self.storage.get_payout(payout_id)
            if payout is None:
                raise NotFoundError(f"Payout {payout_id} not found")

            if payout.is_completed:
                self.ledger.record_settlement_for_payout(payout_id)
                return {"status": OUTCOME_ALREADY_COMPLETED, "payoutId": payout_id}

            try:
                self.storage.mark_payout_completed(payout_id, self.clock())
            except sqlite3.Error as e:
                logger.error(f"Failed to complete payout {payout_id}: {e}")
                raise InternalError("Failed to update payout status") from e

            self.ledger.record_settlement_for_payout(payout_id)
            logger.info(f"Payout {payout_id} completed")
            return {"status": PayoutStatus.COMPLETED.value, "payoutId": payout_id}

    def seller_payouts_summary(self) -> List[Dict[str, Any]]:
        """Per-seller payout counts and net totals by status."""
        totals = defaultdict(lambda: {
            "completedCount": 0,
            "pendingCount": 0,
            "completedNet": Decimal("0"),
            "pendingNet": Decimal("0"),
        })
        for payout in self.storage.list_payouts():
            row = totals[payout.seller_id or ""]
            if payout.is_completed:
                row["completedCount"] += 1
                row["completedNet"] += payout.net_payout
            else:
                row["pendingCount"] += 1
                row["pendingNet"] += payout.net_payout

        return [
            {
                "sellerId": seller_id or None,
                "completedCount": row["completedCount"],
                "pendingCount": row["pendingCount"],
                "completedNet": amount_to_json(row["completedNet"]),
                "pendingNet": amount_to_json(row["pendingNet"]),
            }
            for seller_id, row in sorted(totals.items())
        ]
