# backend/studiobook/utils/money.py
"""Decimal money helpers."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    """Major currency units to integer minor units, rounding half up."""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return quantize_money(Decimal(cents) / 100)


def format_usd(value: Any) -> str:
    amount = quantize_money(value)
    if amount == amount.to_integral_value():
        return f"${int(amount)}"
    return f"${amount}"
