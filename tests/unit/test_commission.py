"""
Unit tests for the commission engine.
"""

from decimal import Decimal

import pytest

from bidengine.core.cache import TTLCache
from bidengine.core.commission import (
    CommissionEngine,
    CommissionSettings,
    compute_breakdown,
    round_half_up,
    to_cents,
)
from bidengine.core.errors import ValidationError


class TestBreakdown:
    """Tests for the pure fee split."""

    def test_reference_split(self):
        """100000 cents at 10% / 3% / 5000 flat."""
        settings = CommissionSettings(Decimal("10"), Decimal("3"), 5000)
        result = compute_breakdown(100000, settings)
        assert result.buyer_commission == 10000
        assert result.seller_commission == 3000
        assert result.platform_flat_cents == 5000
        assert result.total_commission == 18000
        assert result.net_to_seller == 92000
        assert result.fee_to_platform == 18000

    def test_buyer_commission_not_deducted(self):
        """Seller net ignores the buyer-side commission."""
        result = compute_breakdown(1000, CommissionSettings(Decimal("50"), Decimal("0"), 0))
        assert result.buyer_commission == 500
        assert result.net_to_seller == 1000

    def test_half_up_rounding(self):
        """0.5 cent rounds away from zero."""
        result = compute_breakdown(150, CommissionSettings(Decimal("3"), Decimal("1"), 0))
        assert result.buyer_commission == 5  # 4.5
        assert result.seller_commission == 2  # 1.5

    def test_helpers(self):
        assert round_half_up(Decimal("2.5")) == 3
        assert round_half_up(Decimal("2.49")) == 2
        assert to_cents(Decimal("1200.005")) == 120001
        assert to_cents(Decimal("15000")) == 1500000

    def test_to_dict_keys(self):
        result = compute_breakdown(100, CommissionSettings())
        assert set(result.to_dict()) == {
            "buyerCommission",
            "sellerCommission",
            "platformFlatCents",
            "totalCommission",
            "netToSeller",
        }


class TestCommissionEngine:
    """Tests for settings lookup, caching and updates."""

    def test_defaults_without_row(self, storage):
        """No settings row -> 10% / 3% / 0."""
        engine = CommissionEngine(storage)
        settings = engine.get_active()
        assert settings.is_default
        assert settings.buyer_commission_percent == Decimal("10")
        assert settings.seller_commission_percent == Decimal("3")
        assert settings.platform_flat_fee_cents == 0

    def test_defaults_on_storage_failure(self):
        class BrokenStorage:
            def get_active_commission_settings(self):
                raise RuntimeError("db down")

        settings = CommissionEngine(BrokenStorage()).get_active()
        assert settings.is_default

    def test_update_replaces_and_invalidates(self, storage):
        engine = CommissionEngine(storage)
        engine.get_active()
        updated = engine.update_settings(12.5, 4, 250, {"art": {"seller": 5}})
        assert updated.buyer_commission_percent == Decimal("12.5")
        assert updated.platform_flat_fee_cents == 250
        assert updated.category_overrides == {"art": {"seller": 5}}
        assert engine.get_active().id == updated.id

        result = engine.apply_commission_rules(10000)
        assert result.buyer_commission == 1250
        assert result.seller_commission == 400
        assert result.net_to_seller == 10000 - 400 - 250

    def test_only_one_active_row(self, storage):
        engine = CommissionEngine(storage)
        engine.update_settings(1, 1)
        second = engine.update_settings(2, 2)
        rows = storage.adapter.fetch_all("SELECT id FROM commission_settings WHERE active = 1")
        assert [r["id"] for r in rows] == [second.id]

    def test_cache_serves_stale_until_expiry(self, storage):
        """Out-of-band changes appear only after the TTL."""
        ticks = [0.0]
        engine = CommissionEngine(storage, cache=TTLCache(ttl=300, clock=lambda: ticks[0]))
        assert engine.get_active().is_default

        storage.replace_commission_settings(Decimal("20"), Decimal("5"), 0)
        assert engine.get_active().is_default
        assert engine.get_active(force_refresh=True).buyer_commission_percent == Decimal("20")

        engine.invalidate_cache()
        storage.replace_commission_settings(Decimal("30"), Decimal("5"), 0)
        ticks[0] = 301.0
        assert engine.get_active().buyer_commission_percent == Decimal("30")

    @pytest.mark.parametrize(
        "args",
        [(101, 3, 0), (10, -1, 0), (10, 3, -5), ("10", 3, 0)],
    )
    def test_update_validation(self, storage, args):
        with pytest.raises(ValidationError):
            CommissionEngine(storage).update_settings(*args)

    def test_negative_amount_rejected(self, storage):
        with pytest.raises(ValidationError):
            CommissionEngine(storage).apply_commission_rules(-1)
