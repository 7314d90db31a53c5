from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


MONEY_QUANT = Decimal("0.01")
PCT_QUANT = Decimal("0.000001")


def money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def pct(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(PCT_QUANT, rounding=ROUND_HALF_UP)


def as_decimal(value: Any, *, default: Decimal = Decimal("0")) -> Decimal:
    if value is None:
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def mean(values: list[Decimal]) -> Decimal:
    if not values:
        return Decimal("0")
    return sum(values, Decimal("0")) / Decimal(len(values))


def population_std(values: list[Decimal]) -> Decimal:
    """Standard deviation dividing by the count, not count - 1."""
    if not values:
        return Decimal("0")
    avg = mean(values)
    variance = sum(((value - avg) ** 2 for value in values), Decimal("0")) / Decimal(len(values))
    return variance.sqrt() if variance > 0 else Decimal("0")
