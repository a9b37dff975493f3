"""Decimal money helpers. All ledger arithmetic goes through these."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce DB/JSON numerics (Decimal, int, float, str, None) to Decimal without float noise."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value) -> Decimal:
    """Round half-up to cents. Applied to aggregates, never to per-item terms."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
