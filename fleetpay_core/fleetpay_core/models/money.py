"""Conversion of gateway minor units (centavos) to major units."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

_CENT = Decimal("0.01")


def minor_to_major(value: Any) -> Decimal:
    """Convert an integral minor-unit amount to a two-decimal ``Decimal``.

    Accepts ints, integral floats and integral strings (``15000``,
    ``15000.0`` or ``"15000"``).  Booleans, fractional values and anything
    non-numeric raise ``ValueError``.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid minor-unit amount: {value!r}")
    try:
        minor = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid minor-unit amount: {value!r}") from exc
    if not minor.is_finite() or minor != minor.to_integral_value():
        raise ValueError(f"Invalid minor-unit amount: {value!r}")
    return (minor / 100).quantize(_CENT)


def major_to_minor(amount: Decimal | float) -> int:
    """Convert a major-unit amount to integral centavos.

    Raises ``ValueError`` when *amount* has more than two decimal places.
    """
    minor = Decimal(str(amount)) * 100
    if not minor.is_finite() or minor != minor.to_integral_value():
        raise ValueError(f"Amount {amount} is not a whole number of centavos")
    return int(minor)
