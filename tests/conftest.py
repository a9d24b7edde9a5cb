"""
Shared fixtures: a straight east-west route across central London, POIs
seeded along it, and in-memory implementations of every collaborator.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import pytest

from wayside.errors import RoutingEngineError
from wayside.models.config import DEFAULT_CONFIG
from wayside.models.poi import Candidate, DetourEstimate, PoiRecord, ScoredCandidate
from wayside.models.route import RoutePoint, RouteResult
from wayside.services.event_store import InMemoryEventStore
from wayside.services.feature_store import InMemoryInterestStore, InMemoryPoiQualityStore
from wayside.services.poi_store import InMemoryPoiStore
from wayside.stages.orchestrator import PipelineDeps
from wayside.utils.geo import haversine_m

START = RoutePoint(lat=51.5, lng=-0.13)
END = RoutePoint(lat=51.5, lng=-0.07)
NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

# (id, name, category, lng, lat offset north of the route in degrees, popularity, tags)
SEED_POIS = [
    (1, "Bean There", "cafe", -0.128, 0.0004, 4.5, ["coffee", "pastry"]),
    (2, "Daily Grind", "cafe", -0.121, -0.0003, 4.0, ["coffee"]),
    (3, "Flat White Co", "cafe", -0.112, 0.0002, 3.8, ["coffee", "brunch"]),
    (4, "Steam House", "cafe", -0.101, -0.0005, 3.5, ["coffee", "tea"]),
    (5, "Roast Lab", "cafe", -0.089, 0.0003, 4.2, ["coffee", "roastery"]),
    (6, "City Museum", "museum", -0.118, 0.0010, 4.8, ["history", "art"]),
    (7, "Print Gallery", "museum", -0.095, -0.0012, 4.1, ["art", "design"]),
    (8, "Riverside Park", "park", -0.106, 0.0020, 3.9, ["outdoors", "views"]),
    (9, "Canal Gardens", "park", -0.078, -0.0015, 3.2, ["outdoors"]),
    (10, "Noodle Bar", "restaurant", -0.124, -0.0008, 4.4, ["asian", "noodles"]),
    (11, "Pie & Mash", "restaurant", -0.099, 0.0006, 3.7, ["british"]),
    (12, "Taco Stand", "restaurant", -0.083, 0.0004, 4.0, ["mexican", "street food"]),
    (13, "Old Bookshop", "shop", -0.115, -0.0002, 3.0, ["books"]),
    (14, "Vinyl Corner", "shop", -0.092, 0.0009, 3.3, ["music"]),
    (15, "Far Away Tower", "landmark", -0.100, 0.0400, 5.0, ["views"]),
]


def seed_poi_rows() -> List[dict]:
    return [
        {
            "id": pid,
            "name": name,
            "category": category,
            "lat": START.lat + offset,
            "lng": lng,
            "popularity": popularity,
            "tags": tags,
        }
        for pid, name, category, lng, offset, popularity, tags in SEED_POIS
    ]


def straight_geometry(start: RoutePoint, end: RoutePoint, vertices: int = 11) -> List[RoutePoint]:
    return [
        RoutePoint(
            lat=start.lat + (end.lat - start.lat) * i / (vertices - 1),
            lng=start.lng + (end.lng - start.lng) * i / (vertices - 1),
        )
        for i in range(vertices)
    ]


class FakeRoutingEngine:
    """Straight-line router. Profiles can be made unavailable or routeless."""

    def __init__(self, unavailable=(), no_route=(), speed_mps: float = 13.89):
        self.unavailable = set(unavailable)
        self.no_route = set(no_route)
        self.speed_mps = speed_mps
        self.calls: List[str] = []

    async def route(self, waypoints: Sequence[RoutePoint], profile: str = "driving") -> Optional[RouteResult]:
        self.calls.append(profile)
        if profile in self.unavailable:
            raise RoutingEngineError(f"profile {profile} unavailable", [f"fake:{profile}"])
        if profile in self.no_route:
            return None
        geometry: List[RoutePoint] = []
        for a, b in zip(waypoints, waypoints[1:]):
            leg = straight_geometry(a, b)
            geometry.extend(leg if not geometry else leg[1:])
        distance = sum(
            haversine_m(a.lat, a.lng, b.lat, b.lng) for a, b in zip(geometry, geometry[1:])
        )
        return RouteResult(
            geometry=geometry,
            distance_m=distance,
            duration_s=distance / self.speed_mps,
            resolved_mode=profile,
        )


@pytest.fixture
def config():
    return DEFAULT_CONFIG


@pytest.fixture
def start():
    return START


@pytest.fixture
def end():
    return END


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_router():
    """The FakeRoutingEngine class, for tests that need custom behaviour."""
    return FakeRoutingEngine


@pytest.fixture
def routing():
    return FakeRoutingEngine()


@pytest.fixture
def london_route(routing, start, end):
    return asyncio.run(routing.route([start, end], "driving"))


@pytest.fixture
def poi_rows():
    return seed_poi_rows()


@pytest.fixture
def poi_store(poi_rows):
    return InMemoryPoiStore(poi_rows)


@pytest.fixture
def quality_store():
    return InMemoryPoiQualityStore()


@pytest.fixture
def interest_store():
    return InMemoryInterestStore()


@pytest.fixture
def event_store(poi_store):
    return InMemoryEventStore(category_lookup=poi_store.category_of)


@pytest.fixture
def deps(routing, poi_store, quality_store, interest_store, event_store):
    return PipelineDeps(
        routing=routing,
        poi_store=poi_store,
        quality_store=quality_store,
        interest_store=interest_store,
        event_store=event_store,
    )


@pytest.fixture
def make_scored():
    """Factory for ScoredCandidate with sensible defaults for stage-level tests."""

    def _make(
        poi_id: int,
        category: str = "cafe",
        lat: float = 51.5,
        lng: float = -0.1,
        tags=(),
        name: Optional[str] = None,
        fit: float = 0.5,
        segment: int = 0,
        best_distance_m: Optional[float] = 50.0,
        detour: Optional[DetourEstimate] = None,
        **scores,
    ) -> ScoredCandidate:
        poi = PoiRecord(
            id=poi_id,
            name=name if name is not None else f"poi-{poi_id}",
            category=category,
            lat=lat,
            lng=lng,
            tags=list(tags),
        )
        fields = dict(
            distance_fit=fit,
            interest_fit=fit,
            quality_fit=fit,
            novelty_fit=fit,
            detour_fit=fit,
            context_fit=fit,
            route_segment=segment,
            detour=detour or DetourEstimate(),
        )
        fields.update(scores)
        return ScoredCandidate(
            candidate=Candidate(poi=poi, best_distance_m=best_distance_m, nearest_sample_index=0),
            **fields,
        )

    return _make
