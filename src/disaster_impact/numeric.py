"""Lossless numeric coercion for SQL aggregate results."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal:
    """Coerce a driver value (int, float, Decimal, numeric string) to Decimal.

    ``None`` and unparsable strings are treated as zero. Floats go through
    ``str`` so that e.g. ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return Decimal(0)


def to_number(value: Any) -> int | Decimal:
    """Return an ``int`` for integral values, otherwise the exact ``Decimal``."""
    dec = to_decimal(value)
    if dec == dec.to_integral_value():
        return int(dec)
    return dec.normalize()
