"""Decimal helpers shared by the quality engine.

Factors, percentages and money never travel as binary floats inside the
engine: every input is converted with ``to_decimal`` and every reported
figure is rounded half-up, the way settlement documents round.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert ints, floats, strings and Decimals to ``Decimal``.

    Floats go through ``str`` so that ``15.0`` becomes ``Decimal("15.0")``
    rather than its binary expansion.  Returns ``None`` for ``None``.

    Raises:
        ValueError: If the value cannot be read as a number.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric value: {value!r}")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a numeric value: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Not a finite value: {value!r}")
    return result


def round_half_up(value: Decimal, places: Decimal = CENT) -> Decimal:
    """Quantize with ROUND_HALF_UP (2 decimals by default)."""
    return value.quantize(places, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, lower: Decimal = ZERO, upper: Decimal = HUNDRED) -> Decimal:
    """Keep ``value`` inside ``[lower, upper]``."""
    return max(lower, min(upper, value))


def fmt(value: Optional[Decimal]) -> Optional[str]:
    """Plain (non-scientific) string form used in JSON payloads."""
    if value is None:
        return None
    return format(value, "f")
