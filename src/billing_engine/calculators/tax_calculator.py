"""Consumption tax calculation with configurable rounding.

All amounts are integers in the smallest currency unit. Rates are decimal
fractions (0.10 = 10%). The functions here are pure and never raise on an
unrecognized rounding mode; they fall back to FLOOR, which never overstates
tax.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

from billing_engine.calculators.types import ItemsTaxBreakdown, TaxBreakdown, TaxRoundingMode

_QUANTIZE_MODES = {
    TaxRoundingMode.FLOOR: ROUND_FLOOR,
    TaxRoundingMode.CEIL: ROUND_CEILING,
    TaxRoundingMode.ROUND: ROUND_HALF_UP,
}


def coerce_rounding_mode(mode: TaxRoundingMode | str | None) -> TaxRoundingMode:
    """Map any input to a rounding mode, defaulting to FLOOR."""
    if isinstance(mode, TaxRoundingMode):
        return mode
    try:
        return TaxRoundingMode(str(mode).upper())
    except ValueError:
        return TaxRoundingMode.FLOOR


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 rather than its binary expansion
    return Decimal(str(value))


def calculate_tax(
    amount: int,
    rate: Decimal | float | str,
    mode: TaxRoundingMode | str = TaxRoundingMode.FLOOR,
) -> int:
    """Calculate the tax on an amount.

    Args:
        amount: Tax-exclusive amount
        rate: Tax rate as a fraction (0.10 = 10%)
        mode: FLOOR, CEIL or ROUND (half-up); anything else means FLOOR

    Returns:
        Tax amount as an integer
    """
    raw = Decimal(amount) * _to_decimal(rate)
    rounding = _QUANTIZE_MODES[coerce_rounding_mode(mode)]
    return int(raw.quantize(Decimal("1"), rounding=rounding))


def calculate_tax_included(
    amount: int,
    rate: Decimal | float | str,
    mode: TaxRoundingMode | str = TaxRoundingMode.FLOOR,
) -> TaxBreakdown:
    """Calculate tax and the tax-inclusive total for one amount."""
    tax_amount = calculate_tax(amount, rate, mode)
    return TaxBreakdown(tax_amount=tax_amount, total_amount=amount + tax_amount)


def calculate_tax_for_items(
    amounts: Iterable[int],
    rate: Decimal | float | str,
    mode: TaxRoundingMode | str = TaxRoundingMode.FLOOR,
) -> ItemsTaxBreakdown:
    """Calculate tax over many line amounts.

    The amounts are summed first and rounding happens once on the subtotal,
    so many small per-line roundings never drift the invoice total.
    """
    subtotal = sum(amounts)
    tax_amount = calculate_tax(subtotal, rate, mode)
    return ItemsTaxBreakdown(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=subtotal + tax_amount,
    )
