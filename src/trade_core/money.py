"""
Fixed-point money helpers. Everything in trade-core is Decimal.

Looser upstream representations (floats, strings, ints) are converted once,
at the ingestion boundary, via to_money(). Nothing here rounds; display
rounding lives in cli.output.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """Convert a loose money value to Decimal without binary-float artifacts.

    Floats go through repr so 0.1 becomes Decimal("0.1"), not
    0.1000000000000000055511151231257827. Raises ValueError for
    anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"not a money value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "").lstrip("$")
        if not text:
            raise ValueError("empty money value")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError(f"not a money value: {value!r}") from exc
    else:
        raise ValueError(f"not a money value: {value!r}")
    if not result.is_finite():
        raise ValueError(f"money value must be finite, got {value!r}")
    return result


def prorate(amount: Decimal, taken_before: int, take: int, whole: int) -> Decimal:
    """Share of *amount* for quantity units (taken_before, taken_before + take].

    Telescoping: the shares for consecutive slices of one order sum to
    exactly *amount* once the whole quantity has been taken.
    """
    if whole <= 0:
        raise ValueError(f"whole quantity must be > 0, got {whole}")
    if take < 0 or taken_before < 0 or taken_before + take > whole:
        raise ValueError(
            f"slice ({taken_before}, {taken_before + take}] outside order quantity {whole}"
        )
    if amount == ZERO or take == 0:
        return ZERO
    after = taken_before + take
    upper = amount if after == whole else amount * after / whole
    lower = ZERO if taken_before == 0 else amount * taken_before / whole
    return upper - lower


def weighted_average(total_value: Decimal, quantity: int) -> Decimal | None:
    """Quantity-weighted price from an exact notional total."""
    if quantity <= 0:
        return None
    return total_value / quantity
