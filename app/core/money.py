"""
Decimal helpers for commission arithmetic.

All money math runs in MONEY_CONTEXT: 28 significant digits, ROUND_HALF_UP.
Amounts stay unrounded through a calculation and are quantized to cents
only when they are persisted or shown.
"""
from decimal import Context, Decimal, ROUND_HALF_UP, localcontext
from typing import Union

MONEY_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """Convert to Decimal without going through binary float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def quantize_money(value: Numeric) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Numeric) -> int:
    """12.34 -> 1234"""
    return int(quantize_money(value) * HUNDRED)


def money_context():
    """Context manager for commission arithmetic."""
    return localcontext(MONEY_CONTEXT)
