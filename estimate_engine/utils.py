from __future__ import annotations

import math
from decimal import Decimal, ROUND_HALF_UP


def to_float(x) -> float:
    if x is None:
        return 0.0
    if isinstance(x, float):
        return 0.0 if math.isnan(x) else x
    try:
        return float(str(x).strip().replace(",", "") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def to_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if x is None:
        return Decimal(0)
    return Decimal(str(x))


def money(amount, symbol: str = "$", places: int = 2) -> str:
    if isinstance(amount, float) and not math.isfinite(amount):
        return "-"
    q = Decimal(10) ** -places
    val = to_decimal(amount).quantize(q, rounding=ROUND_HALF_UP)
    parts = f"{val:.{places}f}".split(".")
    whole = parts[0]
    frac = parts[1] if len(parts) > 1 else "00"
    sign = ""
    if whole.startswith("-"):
        sign = "-"
        whole = whole[1:]
    whole_with_commas = "{:,}".format(int(whole))
    return f"{sign}{symbol}{whole_with_commas}.{frac}"


def percent_of(part: float, total: float) -> float:
    if not total:
        return 0.0
    return part / total * 100.0


def safe_divide(numerator: float, denominator: float) -> float:
    """Division that yields NaN instead of raising when the denominator is zero."""
    if not denominator:
        return float("nan")
    return numerator / denominator
