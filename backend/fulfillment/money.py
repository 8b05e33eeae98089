from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round2(value: Decimal) -> Decimal:
    """Round to 2 decimals, half-up (0.005 -> 0.01)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Parse a user/DB supplied number without rounding.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", details={"field": field})
    try:
        parsed = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return parsed


def to_money(value, field: str = "amount") -> Decimal:
    return round2(to_decimal(value, field))


def format_money(value) -> str | None:
    if value is None:
        return None
    return f"{round2(value):.2f}"
