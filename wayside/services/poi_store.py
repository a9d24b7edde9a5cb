"""
Geospatial POI store abstraction.

Supplies POIs near a point (ordered by ascending distance) and POIs inside a
bounding box. Implementations: in-memory (tests, JSON datasets); a database
implementation satisfies the same Protocol.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Union

from ..models.poi import PoiRecord
from ..utils.geo import haversine_m

logger = logging.getLogger(__name__)

MAX_RADIUS_M = 50000.0
MAX_LIMIT = 200


class PoiStore(Protocol):
    """Protocol for POI lookups."""

    async def nearby(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        limit: int,
        category: Optional[str] = None,
    ) -> List[PoiRecord]:
        """POIs within radius_m of (lat, lng), nearest first, with distance_m set."""
        ...

    async def within_bounds(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        limit: Optional[int] = None,
    ) -> List[PoiRecord]:
        """POIs inside the bounding box (no particular order); limit=None returns all of them."""
        ...

    async def get_pois(self, poi_ids: Sequence[int]) -> Dict[int, PoiRecord]:
        """POIs by id; unknown ids are omitted."""
        ...

    def category_of(self, poi_id: int) -> Optional[str]:
        """Category for a POI id, or None when unknown. Synchronous: event stores call it to join events to arms."""
        ...


class InMemoryPoiStore:
    """POI store over an in-memory list. Used for tests and JSON datasets."""

    def __init__(self, pois: Iterable[Union[PoiRecord, dict]] = ()):
        self._pois: Dict[int, PoiRecord] = {}
        for poi in pois:
            record = PoiRecord.model_validate(poi) if isinstance(poi, dict) else poi
            self._pois[record.id] = record

    @classmethod
    def from_json_file(cls, path: Union[Path, str]) -> "InMemoryPoiStore":
        """Load from a JSON list of POIs or {"pois": [...]}."""
        with open(path) as f:
            data = json.load(f)
        rows = data.get("pois", []) if isinstance(data, dict) else data
        store = cls(rows)
        logger.info("[poi_store] LOADED path=%s pois=%s", path, len(store._pois))
        return store

    def __len__(self) -> int:
        return len(self._pois)

    def add(self, poi: Union[PoiRecord, dict]) -> None:
        record = PoiRecord.model_validate(poi) if isinstance(poi, dict) else poi
        self._pois[record.id] = record

    def category_of(self, poi_id: int) -> Optional[str]:
        """Category for a POI id (used to join events to arms)."""
        poi = self._pois.get(poi_id)
        return poi.category if poi else None

    async def nearby(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        limit: int,
        category: Optional[str] = None,
    ) -> List[PoiRecord]:
        radius = min(max(float(radius_m), 0.0), MAX_RADIUS_M)
        cap = min(max(int(limit), 0), MAX_LIMIT)
        wanted = category.strip().lower() if category else None

        hits = []
        for poi in self._pois.values():
            if wanted and (poi.category or "").strip().lower() != wanted:
                continue
            d = haversine_m(lat, lng, poi.lat, poi.lng)
            if d <= radius:
                hits.append((d, poi.id, poi))
        hits.sort(key=lambda h: (h[0], h[1]))
        return [poi.model_copy(update={"distance_m": d}) for d, _, poi in hits[:cap]]

    async def within_bounds(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        limit: Optional[int] = None,
    ) -> List[PoiRecord]:
        rows = [
            poi
            for poi in self._pois.values()
            if min_lat <= poi.lat <= max_lat and min_lng <= poi.lng <= max_lng
        ]
        rows.sort(key=lambda p: p.id)
        return rows if limit is None else rows[: max(int(limit), 0)]

    async def get_pois(self, poi_ids: Sequence[int]) -> Dict[int, PoiRecord]:
        return {pid: self._pois[pid] for pid in poi_ids if pid in self._pois}
