"""
Route records: waypoints, routing engine output and corridor samples.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RoutePoint(BaseModel):
    """A (lat, lng) pair. Immutable."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class SamplePoint(BaseModel):
    """A point resampled along the route; route_index is the geometry vertex it falls before."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    route_index: int


class RouteResult(BaseModel):
    """Route produced once per request by the route builder; read-only afterward."""

    geometry: List[RoutePoint]
    distance_m: float
    duration_s: Optional[float] = None
    resolved_mode: str = "driving"
    fallback_used: bool = False
    warning: Optional[str] = None
    backend: Optional[str] = None


class RouteOutcome(BaseModel):
    """Route builder result; route is None when no valid geometry was found."""

    route: Optional[RouteResult] = None
    resolved_mode: str
    fallback_used: bool = False
    warning: Optional[str] = None
