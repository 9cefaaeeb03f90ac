"""
Core Utilities

Shared helpers used across the application.
"""
import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def round2(value: float) -> float:
    """
    Round to 2 decimals, halves away from zero for positive amounts.

    Python's round() uses banker's rounding, which would make 0.125 -> 0.12.
    Money and weights here round 0.125 -> 0.13.
    """
    return math.floor(value * 100 + 0.5) / 100
