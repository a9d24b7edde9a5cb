"""Geodesic distance and bounding-box helpers."""

import math
from typing import Iterable, Tuple

EARTH_RADIUS_M = 6371000.0
# Approximate metres per degree of latitude; used for bounding-box padding.
METERS_PER_DEGREE = 111320.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def padded_bounds(
    points: Iterable[Tuple[float, float]],
    pad_m: float,
) -> Tuple[float, float, float, float]:
    """
    Bounding box (min_lat, max_lat, min_lng, max_lng) around (lat, lng) points,
    padded by pad_m converted to degrees.
    """
    pts = list(points)
    if not pts:
        raise ValueError("padded_bounds needs at least one point")
    pad = pad_m / METERS_PER_DEGREE
    lats = [p[0] for p in pts]
    lngs = [p[1] for p in pts]
    return min(lats) - pad, max(lats) + pad, min(lngs) - pad, max(lngs) + pad
