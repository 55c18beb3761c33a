"""
Input Validation - sanity checks for values entering the ledger.

Every helper returns ``(is_valid, error_message)`` so callers can decide
whether to raise, echo the message, or skip the input.
"""

from typing import Any, Tuple

from bidledger.crypto import is_valid_address

# =============================================================================
# Constants
# =============================================================================

# Field bounds
MIN_AMOUNT = 0
MAX_AMOUNT = 2**256 - 1
MIN_TIMESTAMP = 0
MAX_TIMESTAMP = 2**64 - 1


# =============================================================================
# Validation Functions
# =============================================================================


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any) -> Tuple[bool, str]:
    """Validate a token amount."""
    return validate_integer(amount, "amount", MIN_AMOUNT, MAX_AMOUNT)


def validate_timestamp(timestamp: Any) -> Tuple[bool, str]:
    """Validate a unix timestamp in seconds."""
    return validate_integer(timestamp, "timestamp", MIN_TIMESTAMP, MAX_TIMESTAMP)


def validate_duration(minutes: Any, max_minutes: int) -> Tuple[bool, str]:
    """Validate an auction duration in minutes (must be positive and bounded)."""
    return validate_integer(minutes, "duration", 1, max_minutes)


def validate_address(address: Any) -> Tuple[bool, str]:
    """Validate a 0x-prefixed 20-byte address."""
    if not isinstance(address, str):
        return False, f"address must be str, got {type(address).__name__}"
    if not is_valid_address(address):
        return False, f"malformed address: {address!r}"
    return True, ""
