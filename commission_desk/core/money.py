"""Fixed-point money helpers shared by every calculation step."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, strings and Decimals to Decimal without going through float."""

    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the shortest repr so 0.1 becomes Decimal("0.1")
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, AttributeError):
        raise ValueError(f"Not a numeric value: {value!r}") from None


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Lenient variant of ``to_decimal`` for imported cells; returns None when blank."""

    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"nan", "none", "inf", "infinity"}:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def quantize_money(value: Any) -> Decimal:
    """Round to currency precision, half-up."""

    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Decimal]) -> Decimal:
    total = ZERO
    for value in values:
        total += value
    return quantize_money(total)
