from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from loopvault.core.constants.base import WAD


def _to_decimal(value: str | int | float | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    return Decimal(str(value).strip())


def to_wad(fraction: str | int | float | Decimal) -> int:
    """Convert a human fraction (``0.9`` == 90%) into a WAD-scaled integer."""
    try:
        value = _to_decimal(fraction)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid fraction: {fraction}") from exc
    if value < 0:
        raise ValueError("Fraction must be non-negative")
    return int((value * WAD).to_integral_value(rounding=ROUND_DOWN))


def from_wad(value: int) -> float:
    return float(Decimal(int(value)) / Decimal(WAD))
