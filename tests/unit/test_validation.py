"""
Unit tests for input validation helpers.
"""

from decimal import Decimal

import pytest

from bidengine.utils.validation import (
    MAX_AMOUNT,
    amount_to_json,
    format_amount,
    to_decimal,
    validate_amount,
    validate_id,
    validate_idempotency_key,
    validate_integer,
    validate_percent,
    validate_severity,
)


# =============================================================================
# Amounts
# =============================================================================


class TestValidateAmount:
    """Tests for validate_amount."""

    @pytest.mark.parametrize("value", [1, 1200, 1200.5, Decimal("0.01")])
    def test_positive_numbers_accepted(self, value):
        """Positive finite numbers pass."""
        ok, _ = validate_amount(value)
        assert ok

    @pytest.mark.parametrize("value", [0, -5, -0.5])
    def test_non_positive_rejected(self, value):
        """Zero and negatives fail."""
        ok, msg = validate_amount(value)
        assert not ok
        assert "> 0" in msg

    @pytest.mark.parametrize("value", ["1200", None, True, [1200]])
    def test_non_numbers_rejected(self, value):
        """Strings, None, booleans and lists fail."""
        ok, msg = validate_amount(value)
        assert not ok
        assert "must be a number" in msg

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), Decimal("NaN")])
    def test_non_finite_rejected(self, value):
        """NaN and infinity fail."""
        ok, _ = validate_amount(value)
        assert not ok

    def test_upper_bound(self):
        """Amounts above MAX_AMOUNT fail."""
        assert validate_amount(MAX_AMOUNT)[0]
        assert not validate_amount(MAX_AMOUNT + 1)[0]


# =============================================================================
# Identifiers and Keys
# =============================================================================


class TestValidateId:
    """Tests for identifier and key validation."""

    def test_valid_id(self):
        """Alphanumerics with - _ : . pass."""
        assert validate_id("auction-1_a:b.c")[0]

    def test_invalid_characters(self):
        """Spaces and slashes fail."""
        assert not validate_id("a b")[0]
        assert not validate_id("a/b")[0]

    def test_empty_and_wrong_type(self):
        """Empty strings and non-strings fail."""
        assert not validate_id("")[0]
        assert not validate_id(42)[0]

    def test_too_long(self):
        """IDs longer than 128 characters fail."""
        assert not validate_id("x" * 129)[0]

    def test_idempotency_key_free_form(self):
        """Idempotency keys may contain any characters."""
        assert validate_idempotency_key("bid #1 / retry")[0]
        assert not validate_idempotency_key("k" * 256)[0]


class TestNumericChecks:
    """Tests for integer, percent and severity checks."""

    def test_integer_bounds(self):
        assert validate_integer(5, "n", min_val=1)[0]
        assert not validate_integer(0, "n", min_val=1)[0]
        assert not validate_integer(True, "n")[0]
        assert not validate_integer(1.0, "n")[0]

    def test_percent_range(self):
        assert validate_percent(0, "p")[0]
        assert validate_percent(100, "p")[0]
        assert validate_percent(12.5, "p")[0]
        assert not validate_percent(100.1, "p")[0]
        assert not validate_percent(-1, "p")[0]

    def test_severity(self):
        for severity in ("low", "medium", "high"):
            assert validate_severity(severity)[0]
        assert not validate_severity("critical")[0]


# =============================================================================
# Conversion
# =============================================================================


class TestConversion:
    """Tests for Decimal conversion and canonical formatting."""

    def test_float_goes_through_str(self):
        """1200.1 does not pick up binary noise."""
        assert to_decimal(1200.1) == Decimal("1200.1")

    def test_bad_string_raises(self):
        with pytest.raises(ValueError):
            to_decimal("abc")

    def test_format_integral(self):
        """Integral amounts have no fractional part."""
        assert format_amount(Decimal("1200")) == "1200"
        assert format_amount(Decimal("1200.00")) == "1200"

    def test_format_fractional(self):
        """Trailing zeros are stripped, plain notation kept."""
        assert format_amount(Decimal("1200.50")) == "1200.5"
        assert format_amount(Decimal("1E+3")) == "1000"

    def test_amount_to_json(self):
        assert amount_to_json(Decimal("1200")) == 1200
        assert isinstance(amount_to_json(Decimal("1200")), int)
        assert amount_to_json(Decimal("10.25")) == 10.25
