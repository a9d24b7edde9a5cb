"""
Candidate recall: POIs along the route corridor.

Sources, in merge order:
- corridor: nearby lookups at every route sample (bounded concurrent fan-out)
- endpoint: lookups around start and end at a reduced radius
- preference: the user's top categories at start/middle/end anchors
- novelty: a low-exposure bounding-box pass when recall is thin

Lookups never write shared state. Each returns its own hit list and a single
reducer (merge_hits) folds all hits into candidates after the fan-out, in a
fixed order, so the result does not depend on completion order.

The public entry point is recall_candidates.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import UpstreamError
from ..models.config import RecommendationConfig
from ..models.mode import ModeConfig
from ..models.poi import RECALL_SOURCES, Candidate, PoiRecord
from ..models.profile import UserProfile
from ..models.result import RecallCounts
from ..models.route import RoutePoint, RouteResult, SamplePoint
from ..services.feature_store import PoiQualityStore
from ..services.poi_store import PoiStore
from ..utils.concurrency import map_with_concurrency, with_deadline
from ..utils.geo import haversine_m, padded_bounds
from ..utils.scores import clamp, safe_float

logger = logging.getLogger(__name__)


@dataclass
class RecallHit:
    """One lookup row attributed to a source and (optionally) a route sample."""

    poi: PoiRecord
    source: str
    sample_index: Optional[int] = None
    distance_m: Optional[float] = None


@dataclass
class _Accumulator:
    poi: PoiRecord
    hits: int
    best_distance_m: float
    nearest_sample_index: Optional[int]
    sources: List[str] = field(default_factory=list)


@dataclass
class RecallResult:
    candidates: List[Candidate]
    samples: List[SamplePoint]
    sample_step_m: float
    radius_m: float
    counts: RecallCounts


def plan_sampling(
    route_distance_m: float,
    mode_config: ModeConfig,
    config: RecommendationConfig,
) -> Tuple[int, float]:
    """(max_samples, step_m) adapted to route length, never below the mode's step."""
    distance = max(safe_float(route_distance_m), 0.0)
    max_samples = int(
        clamp(
            math.ceil(distance / max(mode_config.sample_step_m, config.sample_count_step_floor_m)),
            config.min_samples,
            config.max_samples,
        )
    )
    dynamic_step = math.ceil(distance / max_samples) if distance > 0 else mode_config.sample_step_m
    return max_samples, max(mode_config.sample_step_m, dynamic_step)


def sample_route_points(
    geometry: Sequence[RoutePoint],
    step_m: float,
    max_samples: int,
    config: RecommendationConfig,
) -> List[SamplePoint]:
    """
    Walk the polyline emitting a point every step_m metres (linear interpolation
    inside segments). The first vertex is always a sample; the last vertex is
    appended when the final sample is more than tail_gap_m away from it.
    """
    if len(geometry) < 2:
        return []
    step = max(safe_float(step_m), config.resample_min_step_m)
    cap = max(int(max_samples or 0), config.resample_min_samples)

    first = geometry[0]
    samples = [SamplePoint(lat=first.lat, lng=first.lng, route_index=0)]
    travelled = 0.0
    next_at = step

    for i in range(1, len(geometry)):
        a, b = geometry[i - 1], geometry[i]
        segment = haversine_m(a.lat, a.lng, b.lat, b.lng)
        if not segment or not math.isfinite(segment):
            continue
        while travelled + segment >= next_at:
            t = (next_at - travelled) / segment
            samples.append(
                SamplePoint(
                    lat=a.lat + (b.lat - a.lat) * t,
                    lng=a.lng + (b.lng - a.lng) * t,
                    route_index=i,
                )
            )
            if len(samples) >= cap:
                return samples
            next_at += step
        travelled += segment

    last_vertex = geometry[-1]
    last = samples[-1]
    if haversine_m(last.lat, last.lng, last_vertex.lat, last_vertex.lng) > config.tail_gap_m:
        samples.append(
            SamplePoint(lat=last_vertex.lat, lng=last_vertex.lng, route_index=len(geometry) - 1)
        )
    return samples[:cap]


def find_nearest_sample(
    samples: Sequence[SamplePoint],
    lat: float,
    lng: float,
) -> Tuple[Optional[int], float]:
    """(index, distance_m) of the closest sample; (None, inf) when there are none."""
    best_index: Optional[int] = None
    best_distance = math.inf
    for idx, sample in enumerate(samples):
        d = haversine_m(lat, lng, sample.lat, sample.lng)
        if d < best_distance:
            best_index, best_distance = idx, d
    return best_index, best_distance


def merge_hits(hits: Iterable[RecallHit]) -> Dict[int, _Accumulator]:
    """
    Fold hits into one accumulator per POI id, keeping the minimum distance and
    the sample index that produced it, and every source seen (first-seen order).
    """
    merged: Dict[int, _Accumulator] = {}
    for hit in hits:
        poi = hit.poi
        if not poi.id or not math.isfinite(poi.lat) or not math.isfinite(poi.lng):
            continue
        distance = hit.distance_m
        if distance is None or not math.isfinite(distance):
            distance = poi.distance_m if poi.distance_m is not None else math.inf

        current = merged.get(poi.id)
        if current is None:
            merged[poi.id] = _Accumulator(
                poi=poi,
                hits=1,
                best_distance_m=distance,
                nearest_sample_index=hit.sample_index,
                sources=[hit.source],
            )
            continue

        current.hits += 1
        if distance < current.best_distance_m:
            current.best_distance_m = distance
            if hit.sample_index is not None:
                current.nearest_sample_index = hit.sample_index
        if current.nearest_sample_index is None and hit.sample_index is not None:
            current.nearest_sample_index = hit.sample_index
        if hit.source not in current.sources:
            current.sources.append(hit.source)
    return merged


class _SourceRunner:
    """Runs lookups for one request with the configured deadline and failure policy."""

    def __init__(self, config: RecommendationConfig, counts: RecallCounts):
        self.config = config
        self.counts = counts

    async def lookup(self, source: str, awaitable) -> Tuple[List[PoiRecord], bool]:
        """(rows, failed). Failures propagate unless recall is best-effort."""
        try:
            rows = await with_deadline(awaitable, self.config.lookup_timeout_s, f"{source} lookup")
            return list(rows), False
        except UpstreamError as e:
            if not self.config.recall_best_effort:
                raise
            logger.warning("[recall] SOURCE_FAILED source=%s error=%s", source, e)
            return [], True

    def record_failures(self, source: str, failures: int) -> None:
        if failures:
            self.counts.failed[source] = self.counts.failed.get(source, 0) + failures


async def _corridor_hits(
    runner: _SourceRunner,
    poi_store: PoiStore,
    samples: List[SamplePoint],
    radius_m: float,
    per_sample_limit: int,
    category: Optional[str],
) -> List[RecallHit]:
    async def worker(sample: SamplePoint, index: int):
        rows, failed = await runner.lookup(
            "corridor",
            poi_store.nearby(sample.lat, sample.lng, radius_m, per_sample_limit, category),
        )
        return index, rows, failed

    results = await map_with_concurrency(samples, runner.config.corridor_concurrency, worker)

    hits: List[RecallHit] = []
    failures = 0
    for index, rows, failed in results:
        failures += int(failed)
        runner.counts.raw_corridor += len(rows)
        for poi in rows:
            hits.append(RecallHit(poi=poi, source="corridor", sample_index=index, distance_m=poi.distance_m))
    runner.record_failures("corridor", failures)
    return hits


def _anchored_hits(rows: Iterable[PoiRecord], source: str, samples: List[SamplePoint]) -> List[RecallHit]:
    hits = []
    for poi in rows:
        index, distance = find_nearest_sample(samples, poi.lat, poi.lng)
        hits.append(RecallHit(poi=poi, source=source, sample_index=index, distance_m=distance))
    return hits


async def _endpoint_hits(
    runner: _SourceRunner,
    poi_store: PoiStore,
    endpoints: Sequence[RoutePoint],
    samples: List[SamplePoint],
    radius_m: float,
    category: Optional[str],
) -> List[RecallHit]:
    config = runner.config
    hits: List[RecallHit] = []
    failures = 0
    for point in endpoints:
        rows, failed = await runner.lookup(
            "endpoint",
            poi_store.nearby(
                point.lat,
                point.lng,
                round(radius_m * config.endpoint_radius_factor),
                config.endpoint_limit,
                category,
            ),
        )
        failures += int(failed)
        runner.counts.raw_endpoint += len(rows)
        hits.extend(_anchored_hits(rows, "endpoint", samples))
    runner.record_failures("endpoint", failures)
    return hits


async def _preference_hits(
    runner: _SourceRunner,
    poi_store: PoiStore,
    profile: Optional[UserProfile],
    samples: List[SamplePoint],
    radius_m: float,
) -> List[RecallHit]:
    config = runner.config
    categories = [c for c in (profile.top_categories if profile else []) if c][: config.preference_categories]
    if not categories or not samples:
        return []
    anchors = [samples[0], samples[len(samples) // 2], samples[-1]]

    hits: List[RecallHit] = []
    failures = 0
    for category in categories:
        for anchor in anchors:
            rows, failed = await runner.lookup(
                "preference",
                poi_store.nearby(
                    anchor.lat,
                    anchor.lng,
                    round(radius_m * config.preference_radius_factor),
                    config.preference_limit,
                    category,
                ),
            )
            failures += int(failed)
            runner.counts.raw_preference += len(rows)
            hits.extend(_anchored_hits(rows, "preference", samples))
    runner.record_failures("preference", failures)
    return hits


def _novelty_order(poi: PoiRecord, stats) -> tuple:
    impressions = (stats.impressions if stats and stats.impressions is not None else 0)
    quality = (stats.quality_score if stats and stats.quality_score is not None else 0.0)
    return (impressions, -quality, -poi.popularity, poi.id)


async def _novelty_hits(
    runner: _SourceRunner,
    poi_store: PoiStore,
    quality_store: PoiQualityStore,
    mode: str,
    samples: List[SamplePoint],
    radius_m: float,
    limit: int,
) -> List[RecallHit]:
    """
    Low-exposure POIs in a padded bounding box around the samples: rows without
    a quality score or above the quality floor, least-shown first, kept only
    within novelty_keep_factor radii of their nearest sample.

    The whole box is scored before the limit applies, so a dense box still
    yields its least-exposed rows.
    """
    config = runner.config
    if not samples or limit <= 0:
        return []
    min_lat, max_lat, min_lng, max_lng = padded_bounds(
        ((s.lat, s.lng) for s in samples),
        radius_m * config.novelty_bbox_pad_factor,
    )
    rows, failed = await runner.lookup(
        "novelty",
        poi_store.within_bounds(min_lat, max_lat, min_lng, max_lng),
    )
    if failed:
        runner.record_failures("novelty", 1)
        return []
    if not rows:
        return []

    try:
        stats = await with_deadline(
            quality_store.get_poi_quality([r.id for r in rows], mode),
            config.lookup_timeout_s,
            "novelty quality lookup",
        )
    except UpstreamError as e:
        if not config.recall_best_effort:
            raise
        logger.warning("[recall] SOURCE_FAILED source=novelty error=%s", e)
        runner.record_failures("novelty", 1)
        return []

    eligible = [
        poi
        for poi in rows
        if stats.get(poi.id) is None
        or stats[poi.id].quality_score is None
        or stats[poi.id].quality_score >= config.novelty_min_quality
    ]
    eligible.sort(key=lambda poi: _novelty_order(poi, stats.get(poi.id)))

    hits: List[RecallHit] = []
    for poi in eligible[:limit]:
        index, distance = find_nearest_sample(samples, poi.lat, poi.lng)
        if distance > radius_m * config.novelty_keep_factor:
            continue
        hits.append(RecallHit(poi=poi, source="novelty", sample_index=index, distance_m=distance))
    runner.counts.raw_novelty += len(hits)
    return hits


def _to_candidates(
    merged: Dict[int, _Accumulator],
    start: RoutePoint,
    end: RoutePoint,
    counts: RecallCounts,
) -> List[Candidate]:
    candidates = []
    for acc in merged.values():
        for source in acc.sources:
            if source in RECALL_SOURCES:
                setattr(counts, source, getattr(counts, source) + 1)
        candidates.append(
            Candidate(
                poi=acc.poi,
                hits=acc.hits,
                best_distance_m=acc.best_distance_m if math.isfinite(acc.best_distance_m) else None,
                nearest_sample_index=acc.nearest_sample_index,
                sources=list(acc.sources),
                distance_to_start_m=round(haversine_m(acc.poi.lat, acc.poi.lng, start.lat, start.lng)),
                distance_to_end_m=round(haversine_m(acc.poi.lat, acc.poi.lng, end.lat, end.lng)),
            )
        )
    return candidates


async def recall_candidates(
    route: RouteResult,
    start: RoutePoint,
    end: RoutePoint,
    mode_config: ModeConfig,
    profile: Optional[UserProfile],
    poi_store: PoiStore,
    quality_store: PoiQualityStore,
    config: RecommendationConfig,
    category: Optional[str] = None,
    candidate_limit: int = 180,
    per_sample_limit: int = 18,
    radius_override: Optional[float] = None,
) -> RecallResult:
    """Recall candidates from all sources and merge them by POI id."""
    max_samples, step_m = plan_sampling(route.distance_m, mode_config, config)
    radius_m = clamp(
        safe_float(radius_override) or mode_config.corridor_radius_m,
        config.min_radius_m,
        config.max_radius_m,
    )
    samples = sample_route_points(route.geometry, step_m, max_samples, config)
    counts = RecallCounts()
    runner = _SourceRunner(config, counts)

    hits = await _corridor_hits(runner, poi_store, samples, radius_m, per_sample_limit, category)
    hits += await _endpoint_hits(runner, poi_store, (start, end), samples, radius_m, category)
    hits += await _preference_hits(runner, poi_store, profile, samples, radius_m)
    merged = merge_hits(hits)

    needed = max(0, min(candidate_limit, config.novelty_target) - len(merged))
    if needed > 0:
        novelty = await _novelty_hits(
            runner, poi_store, quality_store, mode_config.mode, samples, radius_m, needed * 2
        )
        merged = merge_hits(hits + novelty)

    candidates = _to_candidates(merged, start, end, counts)
    logger.info(
        "[recall] DONE samples=%s radius_m=%.0f candidates=%s corridor=%s endpoint=%s preference=%s novelty=%s failed=%s",
        len(samples),
        radius_m,
        len(candidates),
        counts.corridor,
        counts.endpoint,
        counts.preference,
        counts.novelty,
        counts.failed or "{}",
    )
    return RecallResult(
        candidates=candidates,
        samples=samples,
        sample_step_m=step_m,
        radius_m=radius_m,
        counts=counts,
    )
