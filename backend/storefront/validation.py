# Overview: Input coercion helpers for request payloads (amounts, quantities, ids).

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmount, ValidationError


# Maximum single amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_LINE_QUANTITY = 10_000


def parse_amount_cents(value: Any, field: str = "amount") -> int:
    """
    Convert a client-supplied money amount to integer cents.

    Accepts integers (already cents when ``field`` ends with ``_cents``),
    decimal strings ("6.00", "6") and floats with at most two decimals.
    Rejects booleans, negative numbers, scientific notation and sub-cent
    precision.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} is required")

    if field.endswith("_cents"):
        if isinstance(value, int):
            cents = value
        elif isinstance(value, str) and value.strip().isdigit():
            cents = int(value.strip())
        else:
            raise InvalidAmount(f"{field} must be an integer number of cents")
    else:
        text = str(value).strip()
        if not text or "e" in text.lower():
            raise InvalidAmount(f"{field} must be a plain decimal amount")
        try:
            dec = Decimal(text)
        except InvalidOperation:
            raise InvalidAmount(f"{field} must be a number")
        if not dec.is_finite():
            raise InvalidAmount(f"{field} must be a number")
        if dec != dec.quantize(Decimal("0.01")):
            raise InvalidAmount(f"{field} cannot have more than two decimal places")
        cents = int(dec * 100)

    if cents <= 0:
        raise InvalidAmount(f"{field} must be greater than zero")
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"{field} cannot exceed {MAX_AMOUNT_CENTS / 100:,.2f}")
    return cents


def parse_quantity(value: Any, *, allow_zero: bool = False, allow_negative: bool = False) -> int:
    """Parse a line quantity; strings must be plain digits."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("quantity must be an integer")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped.lstrip("-").isdigit():
            raise ValidationError("quantity must be an integer")
        qty = int(stripped)
    else:
        raise ValidationError("quantity must be an integer")

    if qty < 0 and not allow_negative:
        raise ValidationError("quantity cannot be negative")
    if qty == 0 and not allow_zero:
        raise ValidationError("quantity must be at least 1")
    if abs(qty) > MAX_LINE_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_LINE_QUANTITY}")
    return qty


def clean_text(value: Any, *, max_length: int = 255) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"Value exceeds max length {max_length}")
    return text


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"
