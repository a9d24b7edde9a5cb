"""
Score helpers: clamping, safe numeric coercion, weight normalization and
time utilities shared by every stage.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return min(max(value, low), high)


def safe_float(value: Any, fallback: float = 0.0) -> float:
    """Coerce to a finite float; None, NaN, inf and junk become fallback."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        num = float(value)
    except (TypeError, ValueError):
        return fallback
    return num if math.isfinite(num) else fallback


def round_to(value: float, digits: int = 6) -> float:
    """Round for stable output (scores are reported at 6 dp)."""
    return round(safe_float(value), digits)


def normalize_weight(value: Any, fallback: float = 0.5) -> float:
    """
    Normalize a user-facing weight into [0, 1].

    Values above 1 are read as percentages (35 -> 0.35); non-numeric input
    falls back to the default.
    """
    num = safe_float(value, fallback)
    if num > 1:
        num /= 100
    return clamp(num, 0.0, 1.0)


def unit_score(value: Any) -> float:
    """Finite value clamped into [0, 1]."""
    return clamp(safe_float(value), 0.0, 1.0)


def as_utc(dt: Optional[datetime] = None) -> datetime:
    """Timezone-aware UTC datetime; None means now, naive values are taken as UTC."""
    if dt is None:
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from earlier to later (never negative)."""
    return max((as_utc(later) - as_utc(earlier)).total_seconds(), 0.0) / 86400.0
