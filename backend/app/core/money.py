"""Currency rounding.

Amounts are rounded once per aggregate (never per line item) so rounding
error does not compound across many small lines. Every subtotal, tax,
total, tip and change value passes through ``round_currency`` before it
is persisted or compared.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from app.core.config import settings

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a numeric value to Decimal. None and non-finite values become 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() avoids binary float artefacts (0.1 -> 0.1000000000000000055...)
            d = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return ZERO
    if not d.is_finite():
        return ZERO
    return d


def currency_quantum(decimals: Optional[int] = None) -> Decimal:
    """Smallest currency unit, e.g. Decimal('1') for COP or Decimal('0.01') for EUR."""
    places = settings.currency_decimals if decimals is None else decimals
    return Decimal(1).scaleb(-places)


def round_currency(value: Optional[Number], decimals: Optional[int] = None) -> Decimal:
    """Round to the nearest currency unit, halves away from zero."""
    return to_decimal(value).quantize(currency_quantum(decimals), rounding=ROUND_HALF_UP)


def percent_of(amount: Number, percent: Number) -> Decimal:
    """Unrounded ``amount * percent / 100``."""
    return to_decimal(amount) * to_decimal(percent) / Decimal(100)
