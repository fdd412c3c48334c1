"""
Decimal helpers for currency amounts.

Amounts are accumulated in full precision; rounding to the minor unit only
happens when a value is displayed.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from vetcare.core.config import settings

ZERO = Decimal('0')
CENT = Decimal('0.01')


def to_decimal(value: Any) -> Decimal:
    """Convert ints, strings and floats to Decimal without binary drift."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return ZERO
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a numeric amount: {value!r}")


def quantize_money(amount: Any) -> Decimal:
    """Round to 2 decimals using ROUND_HALF_UP (commercial rounding)"""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Any, symbol: str = None) -> str:
    if amount is None:
        return ''
    symbol = settings.CURRENCY_SYMBOL if symbol is None else symbol
    value = quantize_money(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"
