from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


# python's round() is banker's rounding; scores and lifts use half-up
def round_half_up(value: float, digits: int = 0) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_half_up_int(value: float) -> int:
    return int(round_half_up(value, 0))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
