"""Shared utilities: numeric helpers, geodesy, small linear algebra, async fan-out."""

from .concurrency import map_with_concurrency, with_deadline
from .geo import METERS_PER_DEGREE, haversine_m, padded_bounds
from .linalg import invert_matrix, min_max_normalize
from .scores import as_utc, clamp, days_between, normalize_weight, round_to, safe_float, unit_score

__all__ = [
    "METERS_PER_DEGREE",
    "as_utc",
    "clamp",
    "days_between",
    "haversine_m",
    "invert_matrix",
    "map_with_concurrency",
    "min_max_normalize",
    "normalize_weight",
    "padded_bounds",
    "round_to",
    "safe_float",
    "unit_score",
    "with_deadline",
]
