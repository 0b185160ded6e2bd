"""
Input Validation - checks applied to every value crossing the API boundary.

Validators return (is_valid, error_message) tuples; engines turn a failed
check into a ValidationError.
"""

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

MAX_ID_LENGTH = 128
MAX_IDEMPOTENCY_KEY_LENGTH = 255
MAX_REASON_LENGTH = 1024

# Upper bound for a single bid or price (10^12 currency units)
MAX_AMOUNT = Decimal("1000000000000")

ID_PATTERN = r"^[A-Za-z0-9_\-:.]+$"

SEVERITIES = ("low", "medium", "high")


# =============================================================================
# Validation Functions
# =============================================================================


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_REASON_LENGTH,
    pattern: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value:
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_id(value: Any, name: str = "id") -> Tuple[bool, str]:
    """Validate an entity identifier (auction, bidder, payout, ...)."""
    return validate_string(value, name, max_length=MAX_ID_LENGTH, pattern=ID_PATTERN)


def validate_idempotency_key(value: Any) -> Tuple[bool, str]:
    """Validate a client-supplied idempotency key."""
    return validate_string(value, "idempotency_key", max_length=MAX_IDEMPOTENCY_KEY_LENGTH)


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """
    Validate a bid amount.

    Accepts int, float or Decimal; rejects booleans, strings, NaN,
    infinities, non-positive values and values above MAX_AMOUNT.

    Returns:
        (is_valid, error_message)
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        return False, f"{name} must be a number, got {type(amount).__name__}"

    if isinstance(amount, float) and not math.isfinite(amount):
        return False, f"{name} must be finite"

    if isinstance(amount, Decimal) and not amount.is_finite():
        return False, f"{name} must be finite"

    if amount <= 0:
        return False, f"{name} must be > 0, got {amount}"

    if to_decimal(amount) > MAX_AMOUNT:
        return False, f"{name} must be <= {MAX_AMOUNT}"

    return True, ""


def validate_integer(
    value: Any,
    name: str,
    min_val: int = 0,
    max_val: int = 2**31 - 1,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_percent(value: Any, name: str) -> Tuple[bool, str]:
    """Validate a percentage in [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False, f"{name} must be a number, got {type(value).__name__}"

    if not 0 <= value <= 100:
        return False, f"{name} must be between 0 and 100, got {value}"

    return True, ""


def validate_severity(value: Any) -> Tuple[bool, str]:
    """Validate a penalty severity."""
    if value not in SEVERITIES:
        return False, f"severity must be one of {', '.join(SEVERITIES)}, got {value!r}"
    return True, ""


# =============================================================================
# Conversion Helpers
# =============================================================================


def to_decimal(value: Any) -> Decimal:
    """
    Convert a number (or numeric string) to Decimal without binary noise.

    Floats go through str() so 1200.5 becomes Decimal('1200.5').
    """
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def format_amount(value: Decimal) -> str:
    """
    Canonical text form of an amount.

    Integral values have no fractional part ("1200"), others are written
    in plain notation with trailing zeros removed ("1200.5").
    """
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def amount_to_json(value: Decimal):
    """JSON-friendly number: int when integral, float otherwise."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


__all__ = [
    "validate_string",
    "validate_id",
    "validate_idempotency_key",
    "validate_amount",
    "validate_integer",
    "validate_percent",
    "validate_severity",
    "to_decimal",
    "format_amount",
    "amount_to_json",
    "MAX_AMOUNT",
    "SEVERITIES",
]
