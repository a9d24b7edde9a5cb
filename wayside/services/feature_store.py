"""
Offline feature stores: POI quality/novelty stats and user interest aggregates.

Only the read contracts are consumed by the pipeline; the aggregation jobs
that populate them live elsewhere. In-memory implementations double as test
fakes and as loaders for JSON snapshots.
"""

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Union

from ..models.stats import InterestAggRow, PoiQualityStats

# Aggregate rows returned per user, highest score first.
INTEREST_ROW_LIMIT = 500


class PoiQualityStore(Protocol):
    """Protocol for per (poi, mode) quality/novelty stats."""

    async def get_poi_quality(
        self,
        poi_ids: Sequence[int],
        mode: str,
    ) -> Dict[int, PoiQualityStats]:
        """Stats keyed by poi id for the given mode; POIs without stats are omitted."""
        ...


class InterestStore(Protocol):
    """Protocol for decayed user interest aggregates."""

    async def get_user_interest_agg(self, user_id: str) -> List[InterestAggRow]:
        """Aggregate rows for the user, highest score first. Empty when none exist."""
        ...


class InMemoryPoiQualityStore:
    """Quality stats held in memory, keyed by (poi_id, mode)."""

    def __init__(self, rows: Iterable[Union[PoiQualityStats, dict]] = ()):
        self._lock = threading.Lock()
        self._rows: Dict[tuple, PoiQualityStats] = {}
        for row in rows:
            self.upsert(row)

    @classmethod
    def from_json_file(cls, path: Union[Path, str]) -> "InMemoryPoiQualityStore":
        with open(path) as f:
            data = json.load(f)
        return cls(data.get("poi_quality_stats", []) if isinstance(data, dict) else data)

    def upsert(self, row: Union[PoiQualityStats, dict]) -> None:
        stats = PoiQualityStats.model_validate(row) if isinstance(row, dict) else row
        with self._lock:
            self._rows[(stats.poi_id, stats.mode)] = stats

    async def get_poi_quality(
        self,
        poi_ids: Sequence[int],
        mode: str,
    ) -> Dict[int, PoiQualityStats]:
        with self._lock:
            return {
                pid: self._rows[(pid, mode)]
                for pid in poi_ids
                if (pid, mode) in self._rows
            }


class InMemoryInterestStore:
    """Interest aggregates held in memory per user."""

    def __init__(self, rows_by_user: Dict[str, Iterable[Union[InterestAggRow, dict]]] = None):
        self._lock = threading.Lock()
        self._rows: Dict[str, List[InterestAggRow]] = {}
        for user_id, rows in (rows_by_user or {}).items():
            self.set_rows(user_id, rows)

    def set_rows(self, user_id: str, rows: Iterable[Union[InterestAggRow, dict]]) -> None:
        parsed = [
            InterestAggRow.model_validate(r) if isinstance(r, dict) else r
            for r in rows
        ]
        parsed.sort(key=lambda r: r.score, reverse=True)
        with self._lock:
            self._rows[str(user_id)] = parsed

    async def get_user_interest_agg(self, user_id: str) -> List[InterestAggRow]:
        with self._lock:
            return list(self._rows.get(str(user_id), []))[:INTEREST_ROW_LIMIT]
