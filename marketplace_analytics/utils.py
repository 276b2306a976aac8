"""
Numeric and time helpers shared by aggregation, scoring and reporting.
"""

import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    """Round half-up to 2 decimal places."""
    return round_half_up(value * 100) / 100


def percentage(part: float, whole: float) -> float:
    """``part / whole`` as a percentage with 2 decimals, 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0.0
    return round_half_up(part / whole * 10000) / 100


def average(total: float, count: int) -> float:
    """Average rounded to 2 decimals, 0 when there is nothing to divide by."""
    if count <= 0:
        return 0.0
    return round2(total / count)
