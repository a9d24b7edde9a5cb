"""
Event sink and event-history reads.

The sink accepts normalized RecommendationEvents and must be safe to call
concurrently and idempotently per request: an event whose
(request_id, poi_id, event_type) was already stored is counted as a duplicate
and not stored again. History reads feed personal novelty, the live profile
fallback and bandit arm reconstruction.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from ..models.event import RecommendationEvent
from ..models.poi import normalize_category
from ..models.stats import ArmHistory

logger = logging.getLogger(__name__)

CategoryLookup = Callable[[int], Optional[str]]


class EventStore(Protocol):
    """Protocol for recommendation event persistence and history queries."""

    async def insert_events(self, events: Sequence[RecommendationEvent]) -> Tuple[int, int]:
        """Persist events. Returns (inserted, duplicates)."""
        ...

    async def user_impression_counts(
        self,
        user_id: str,
        poi_ids: Sequence[int],
        since: datetime,
    ) -> Dict[int, int]:
        """Impressions of each POI shown to the user since `since`."""
        ...

    async def user_events(self, user_id: str, since: datetime) -> List[RecommendationEvent]:
        """All of the user's events since `since`."""
        ...

    async def arm_history(
        self,
        mode: str,
        category_groups: Sequence[str],
        since: datetime,
        reward_weights: Mapping[str, float],
    ) -> Dict[str, ArmHistory]:
        """Reward-weighted sums per category group for events in `mode` since `since`."""
        ...


class InMemoryEventStore:
    """
    Event store held in memory, guarded by a lock.

    category_lookup resolves a POI id to its category so history can be
    grouped into bandit arms (the database implementation joins the POI table).
    """

    def __init__(self, category_lookup: Optional[CategoryLookup] = None):
        self._lock = threading.Lock()
        self._events: List[RecommendationEvent] = []
        self._keys: set = set()
        self._category_lookup = category_lookup

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _commit_locked(self, event: RecommendationEvent) -> None:
        key = event.dedupe_key()
        if key is not None:
            self._keys.add(key)
        self._events.append(event)

    def _store_locked(self, event: RecommendationEvent) -> bool:
        key = event.dedupe_key()
        if key is not None and key in self._keys:
            return False
        self._commit_locked(event)
        return True

    def _persist(self, events: List[RecommendationEvent]) -> None:
        """Hook for durable subclasses; called under the lock before the events are committed to memory."""

    async def insert_events(self, events: Sequence[RecommendationEvent]) -> Tuple[int, int]:
        """
        Store new events and count duplicates.

        New events are persisted before they become visible in memory, so a
        failed write raises and leaves the store as it was. The write is
        synchronous and holds the lock for its duration.
        """
        inserted: List[RecommendationEvent] = []
        duplicates = 0
        with self._lock:
            batch_keys = set()
            for event in events:
                key = event.dedupe_key()
                if key is not None and (key in self._keys or key in batch_keys):
                    duplicates += 1
                    continue
                if key is not None:
                    batch_keys.add(key)
                inserted.append(event)
            if inserted:
                self._persist(inserted)
                for event in inserted:
                    self._commit_locked(event)
        return len(inserted), duplicates

    def _snapshot(self) -> List[RecommendationEvent]:
        with self._lock:
            return list(self._events)

    async def user_impression_counts(
        self,
        user_id: str,
        poi_ids: Sequence[int],
        since: datetime,
    ) -> Dict[int, int]:
        wanted = set(poi_ids)
        counts: Dict[int, int] = {}
        for event in self._snapshot():
            if (
                event.user_id == str(user_id)
                and event.event_type == "impression"
                and event.poi_id in wanted
                and event.ts >= since
            ):
                counts[event.poi_id] = counts.get(event.poi_id, 0) + 1
        return counts

    async def user_events(self, user_id: str, since: datetime) -> List[RecommendationEvent]:
        return [
            event
            for event in self._snapshot()
            if event.user_id == str(user_id) and event.ts >= since
        ]

    async def arm_history(
        self,
        mode: str,
        category_groups: Sequence[str],
        since: datetime,
        reward_weights: Mapping[str, float],
    ) -> Dict[str, ArmHistory]:
        groups = set(category_groups)
        history: Dict[str, ArmHistory] = {}
        lookup = self._category_lookup or (lambda _pid: None)
        for event in self._snapshot():
            if event.mode != mode or event.ts < since:
                continue
            group = normalize_category(lookup(event.poi_id))
            if group not in groups:
                continue
            arm = history.setdefault(group, ArmHistory(category_group=group))
            arm.reward_sum += reward_weights.get(event.event_type, 0.0) * event.event_value
            arm.total_events += 1
            if event.event_type == "impression":
                arm.impressions += 1
        return history


class JsonlEventStore(InMemoryEventStore):
    """Event store that appends every stored event to a JSON-lines file."""

    def __init__(
        self,
        path: Union[Path, str],
        category_lookup: Optional[CategoryLookup] = None,
    ):
        super().__init__(category_lookup)
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        loaded = 0
        with open(self._path) as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = RecommendationEvent.model_validate(json.loads(line))
                except ValueError as e:
                    logger.warning("[event_store] SKIP_BAD_LINE path=%s line=%s error=%s", self._path, line_no, e)
                    continue
                with self._lock:
                    if self._store_locked(event):
                        loaded += 1
        logger.info("[event_store] LOADED path=%s events=%s", self._path, loaded)

    def _persist(self, events: Iterable[RecommendationEvent]) -> None:
        with open(self._path, "a") as f:
            for event in events:
                f.write(event.model_dump_json() + "\n")
