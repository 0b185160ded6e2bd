"""
Records - persisted entities of the bidding and settlement core.

Auction lifecycle:
-----------------
    scheduled -> active/live -> ended -> (awaiting_funds | payment_pending
    -> payment_under_review) -> completed

Bids are accepted only while an auction is active or live. Settlement
moves an ended auction to completed once escrow has been released.

Money:
-----
Prices and payout amounts are Decimal currency units. Commission and
ledger amounts are integer cents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


# =============================================================================
# Time helpers
# =============================================================================


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 UTC with microseconds."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(str, Enum):
    """Lifecycle status of an auction."""
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    LIVE = "live"
    ENDED = "ended"
    AWAITING_FUNDS = "awaiting_funds"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_UNDER_REVIEW = "payment_under_review"
    COMPLETED = "completed"


BIDDABLE_STATUSES = frozenset({AuctionStatus.ACTIVE.value, AuctionStatus.LIVE.value})


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class EscrowStatus(str, Enum):
    PENDING = "PENDING"
    FUNDED = "FUNDED"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"


class ControlStatus(str, Enum):
    """Bidding/selling control applied to a user."""
    NORMAL = "normal"
    LIMITED = "limited"
    BLOCKED = "blocked"
    FLAGGED = "flagged"


DEFAULT_INCREMENT = Decimal("100")


# =============================================================================
# Auction & Bids
# =============================================================================


@dataclass
class Auction:
    """
    An auction row.

    current_price only moves up while the auction is active or live;
    it is advanced exclusively by bid acceptance.
    """
    id: str
    status: str
    current_price: Optional[Decimal] = None
    increment_amount: Optional[Decimal] = None
    starting_price: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    seller_id: Optional[str] = None
    product_id: Optional[str] = None
    winner_id: Optional[str] = None
    final_price: Optional[Decimal] = None
    highest_bid_id: Optional[str] = None
    actual_end_time: Optional[datetime] = None

    @property
    def effective_price(self) -> Decimal:
        """Price a new bid must beat: current, else starting, else 0."""
        if self.current_price:
            return self.current_price
        if self.starting_price:
            return self.starting_price
        return Decimal("0")

    @property
    def effective_increment(self) -> Decimal:
        """Configured increment, else the platform default of 100."""
        return self.increment_amount or DEFAULT_INCREMENT

    @property
    def is_biddable_status(self) -> bool:
        return (self.status or "").lower() in BIDDABLE_STATUSES


@dataclass(frozen=True)
class Bid:
    """An accepted bid. Never updated or deleted."""
    id: str
    auction_id: str
    bidder_id: str
    amount: Decimal
    status: str
    created_at: datetime


@dataclass(frozen=True)
class BidLedgerEntry:
    """One link of an auction's hash chain."""
    seq: int
    auction_id: str
    bid_id: str
    bidder_id: str
    amount: str  # canonical text, exactly as hashed
    timestamp: str  # ISO-8601, exactly as hashed
    prev_hash: Optional[str]
    hash: str


# =============================================================================
# Settlement
# =============================================================================


@dataclass
class Payout:
    """Seller payout for one settled auction (payout_reference = auction id)."""
    id: str
    seller_id: Optional[str]
    product_id: Optional[str]
    sale_price: Decimal
    commission_amount: Decimal
    net_payout: Decimal
    payout_reference: str
    status: str = PayoutStatus.PENDING.value
    currency: str = "INR"
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    buyer_commission_amount: Decimal = Decimal("0")

    @property
    def is_completed(self) -> bool:
        return (self.status or "").lower() == PayoutStatus.COMPLETED.value


@dataclass
class EscrowAccount:
    """Escrowed buyer funds for an auction."""
    id: str
    auction_id: str
    buyer_id: str
    status: str
    amount_cents: int = 0


@dataclass
class LedgerAccount:
    id: str
    owner_type: str  # "seller" | "platform"
    owner_id: Optional[str]
    account_type: str  # "seller_wallet" | "platform_clearing"
    currency: str
    status: str = "active"


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    transaction_id: str
    account_id: str
    payout_id: Optional[str]
    debit: int
    credit: int
    balance_after: int
    timestamp: str


# =============================================================================
# Risk
# =============================================================================


@dataclass
class UserControls:
    """Authoritative control row for a user."""
    user_id: str
    status: str = ControlStatus.NORMAL.value
    penalty_points: int = 0
    cooldown_until: Optional[datetime] = None
    cooldown_reason: Optional[str] = None


@dataclass
class RiskScore:
    seller_id: str
    risk_score: float
    risk_level: str
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SellerPenalty:
    id: str
    seller_id: str
    penalty_type: str
    severity: str
    points: int
    reason: Optional[str] = None
    evidence: Optional[dict] = field(default=None, compare=False, hash=False)
    applied_by: Optional[str] = None
    created_at: Optional[datetime] = None
