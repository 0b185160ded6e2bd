"""
Commission Engine - buyer/seller/platform fee split for a sale.

Conceptual Background:
---------------------
All amounts are integer cents. For a sale of `amount` cents:

    buyer_commission  = round(amount * buyer_percent / 100)
    seller_commission = round(amount * seller_percent / 100)
    total             = buyer_commission + seller_commission + platform_flat
    net_to_seller     = amount - seller_commission - platform_flat

Rounding is half-up. The buyer commission is reported and included in
the platform's escrow fee but is not subtracted from the seller's net.

Settings:
--------
Exactly one settings row is active. Reads go through a 5-minute TTL
cache; when no row exists, or the read fails, the defaults
(buyer 10%, seller 3%, flat 0) apply. Administrative updates replace the
active row and invalidate the cache.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from bidengine.core.cache import TTLCache
from bidengine.core.errors import require
from bidengine.core.records import parse_iso, to_iso
from bidengine.utils.logger import get_logger
from bidengine.utils.validation import to_decimal, validate_integer, validate_percent

logger = get_logger("commission")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_COMMISSION_CACHE_TTL = 300.0

DEFAULT_BUYER_PERCENT = Decimal("10")
DEFAULT_SELLER_PERCENT = Decimal("3")
DEFAULT_PLATFORM_FLAT_CENTS = 0

_CACHE_KEY = "active"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class CommissionSettings:
    """Active commission configuration."""
    buyer_commission_percent: Decimal = DEFAULT_BUYER_PERCENT
    seller_commission_percent: Decimal = DEFAULT_SELLER_PERCENT
    platform_flat_fee_cents: int = DEFAULT_PLATFORM_FLAT_CENTS
    category_overrides: Optional[dict] = field(default=None, compare=False, hash=False)
    id: Optional[str] = None  # None for the built-in defaults
    created_at: Optional[datetime] = None

    @property
    def is_default(self) -> bool:
        return self.id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "buyerCommissionPercent": float(self.buyer_commission_percent),
            "sellerCommissionPercent": float(self.seller_commission_percent),
            "platformFlatFeeCents": self.platform_flat_fee_cents,
            "categoryOverrides": self.category_overrides,
            "createdAt": to_iso(self.created_at),
        }


DEFAULT_SETTINGS = CommissionSettings()


@dataclass(frozen=True)
class CommissionBreakdown:
    """Fee split for one sale, in cents."""
    buyer_commission: int
    seller_commission: int
    platform_flat_cents: int
    total_commission: int
    net_to_seller: int

    @property
    def fee_to_platform(self) -> int:
        """Amount the escrow release routes to the platform."""
        return self.buyer_commission + self.seller_commission + self.platform_flat_cents

    def to_dict(self) -> Dict[str, int]:
        return {
            "buyerCommission": self.buyer_commission,
            "sellerCommission": self.seller_commission,
            "platformFlatCents": self.platform_flat_cents,
            "totalCommission": self.total_commission,
            "netToSeller": self.net_to_seller,
        }


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_breakdown(amount_cents: int, settings: CommissionSettings) -> CommissionBreakdown:
    """Pure fee split of `amount_cents` under `settings`."""
    amount = Decimal(amount_cents)
    buyer = round_half_up(amount * settings.buyer_commission_percent / 100)
    seller = round_half_up(amount * settings.seller_commission_percent / 100)
    flat = int(settings.platform_flat_fee_cents or 0)
    return CommissionBreakdown(
        buyer_commission=buyer,
        seller_commission=seller,
        platform_flat_cents=flat,
        total_commission=buyer + seller + flat,
        net_to_seller=amount_cents - seller - flat,
    )


def to_cents(amount: Decimal) -> int:
    """Currency units -> integer cents, rounded half-up."""
    return round_half_up(Decimal(amount) * 100)


# =============================================================================
# Engine
# =============================================================================


class CommissionEngine:
    """
    Serves the active commission settings and computes fee splits.

    Args:
        storage: StorageManager
        cache: TTL cache for the active settings (defaults to a private 5 min cache)
    """

    def __init__(self, storage, cache: Optional[TTLCache] = None):
        self.storage = storage
        self.cache = cache if cache is not None else TTLCache(ttl=DEFAULT_COMMISSION_CACHE_TTL)

    def get_active(self, force_refresh: bool = False) -> CommissionSettings:
        """Active settings from cache, else storage, else the defaults."""
        if not force_refresh:
            cached = self.cache.get(_CACHE_KEY)
            if cached is not None:
                return cached

        try:
            row = self.storage.get_active_commission_settings()
        except Exception as e:
            logger.error(f"Failed to load commission settings, using defaults: {e}")
            row = None

        if row is None:
            settings = DEFAULT_SETTINGS
        else:
            settings = CommissionSettings(
                buyer_commission_percent=Decimal(row["buyer_commission_percent"]),
                seller_commission_percent=Decimal(row["seller_commission_percent"]),
                platform_flat_fee_cents=int(row["platform_flat_fee_cents"] or 0),
                category_overrides=row.get("category_overrides"),
                id=row["id"],
                created_at=parse_iso(row["created_at"]),
            )

        self.cache.set(_CACHE_KEY, settings)
        return settings

    def invalidate_cache(self):
        self.cache.invalidate()

    def apply_commission_rules(
        self,
        amount_cents: int,
        ctx: Optional[Dict[str, Any]] = None,
    ) -> CommissionBreakdown:
        """
        Compute the fee split for a sale.

        Args:
            amount_cents: Sale price in cents
            ctx: Sale context (e.g. category); reserved for category overrides

        Returns:
            CommissionBreakdown
        """
        require(validate_integer(amount_cents, "amount_cents", min_val=0, max_val=10**17))
        return compute_breakdown(amount_cents, self.get_active())

    def update_settings(
        self,
        buyer_commission_percent,
        seller_commission_percent,
        platform_flat_fee_cents: int = 0,
        category_overrides: Optional[dict] = None,
    ) -> CommissionSettings:
        """Replace the active settings row and invalidate the cache."""
        require(validate_percent(buyer_commission_percent, "buyer_commission_percent"))
        require(validate_percent(seller_commission_percent, "seller_commission_percent"))
        require(validate_integer(platform_flat_fee_cents, "platform_flat_fee_cents", min_val=0))

        self.storage.replace_commission_settings(
            to_decimal(buyer_commission_percent),
            to_decimal(seller_commission_percent),
            platform_flat_fee_cents,
            category_overrides,
        )
        self.invalidate_cache()
        settings = self.get_active(force_refresh=True)
        logger.info(
            f"Commission settings updated: buyer {settings.buyer_commission_percent}%, "
            f"seller {settings.seller_commission_percent}%, flat {settings.platform_flat_fee_cents}c"
        )
        return settings
