"""
Feature enrichment: per-candidate fit scores, detour estimate and post-filters.

Each candidate gets distance, interest, quality, novelty, detour, context and
coverage fits (all in [0, 1]), a route segment (0/1/2) and a human-readable
reason. Post-filters drop duplicates, candidates whose detour exceeds its cap
and candidates too far from the route; every drop is counted by reason.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.config import RecommendationConfig
from ..models.mode import ModeConfig
from ..models.poi import Candidate, DetourEstimate, ScoredCandidate
from ..models.profile import UserProfile
from ..models.result import FilterDropCounts
from ..models.route import RouteResult, SamplePoint
from ..models.stats import PoiQualityStats
from ..services.event_store import EventStore
from ..services.feature_store import PoiQualityStore
from ..utils.concurrency import with_deadline
from ..utils.geo import haversine_m
from ..utils.scores import clamp, round_to
from .profile import compute_interest_fit

logger = logging.getLogger(__name__)


@dataclass
class FeatureResult:
    candidates: List[ScoredCandidate]
    drop_counts: FilterDropCounts


def route_segment(progress: float) -> int:
    """Bucket route progress into thirds: 0 (start), 1 (middle), 2 (end)."""
    if progress < 1 / 3:
        return 0
    if progress < 2 / 3:
        return 1
    return 2


def estimate_detour(
    candidate: Candidate,
    samples: Sequence[SamplePoint],
    mode_config: ModeConfig,
    route_duration_s: Optional[float],
    config: RecommendationConfig,
) -> DetourEstimate:
    """
    Extra distance of prev-sample -> POI -> next-sample over prev -> next.

    When the triangle excess is implausibly small compared with the POI's
    distance from the route, 1.9x that distance is used instead. The cap is the
    smaller of the mode's absolute cap and a share of the route duration.
    """
    if not samples:
        return DetourEstimate()

    last = len(samples) - 1
    idx = int(clamp(candidate.nearest_sample_index or 0, 0, last))
    prev = samples[max(0, idx - 1)]
    nxt = samples[min(last, idx + 1)]
    poi = candidate.poi

    d1 = haversine_m(prev.lat, prev.lng, poi.lat, poi.lng)
    d2 = haversine_m(poi.lat, poi.lng, nxt.lat, nxt.lng)
    base = haversine_m(prev.lat, prev.lng, nxt.lat, nxt.lng)

    extra_m = max(0.0, d1 + d2 - base)
    fallback_m = max(candidate.best_distance_m or 0.0, 0.0) * config.detour_fallback_factor
    if not math.isfinite(extra_m) or extra_m < fallback_m * config.detour_fallback_threshold:
        extra_m = fallback_m

    speed = clamp(mode_config.speed_mps or 1.4, 0.8, 30.0)
    extra_s = extra_m / speed

    absolute_cap = max(
        config.detour_min_cap_s,
        min(config.detour_max_cap_s, mode_config.max_detour_minutes * 60 or 600.0),
    )
    if route_duration_s is not None and math.isfinite(route_duration_s):
        ratio_cap = clamp(
            route_duration_s * (mode_config.max_detour_ratio or 0.35),
            config.detour_min_ratio_cap_s,
            config.detour_max_cap_s,
        )
    else:
        ratio_cap = absolute_cap
    cap = min(absolute_cap, ratio_cap)

    return DetourEstimate(
        extra_distance_m=extra_m,
        extra_duration_s=extra_s,
        cap_s=cap,
        fit=clamp(1 - extra_s / max(cap, 1.0), 0.0, 1.0),
    )


def derive_quality_fit(
    candidate: Candidate,
    stats: Optional[PoiQualityStats],
    config: RecommendationConfig,
) -> float:
    """Stored quality score, else smoothed interaction rate, else popularity / 5."""
    if stats is not None:
        if stats.quality_score is not None and math.isfinite(stats.quality_score):
            return clamp(stats.quality_score, 0.0, 1.0)
        impressions = stats.impressions or 0
        # Interactions only count against impressions that were actually served.
        interactions = (stats.interactions or 0) if impressions > 0 else 0
        prior = config.quality_prior_rate * config.quality_prior_count
        return clamp((interactions + prior) / (impressions + config.quality_prior_count), 0.0, 1.0)
    return clamp(candidate.poi.popularity / 5, 0.0, 1.0)


def derive_novelty_fit(
    stats: Optional[PoiQualityStats],
    user_impressions: int,
    config: RecommendationConfig,
) -> float:
    """Blend of global novelty (stored, or inverse log of impressions) and personal novelty."""
    if stats is not None and stats.novelty_score is not None and math.isfinite(stats.novelty_score):
        global_novelty = clamp(stats.novelty_score, 0.0, 1.0)
    else:
        impressions = (stats.impressions if stats is not None else None) or 0
        global_novelty = clamp(1 / (1 + math.log(1 + max(impressions, 0))), 0.0, 1.0)
    personal_novelty = math.exp(-max(user_impressions, 0) / config.novelty_personal_decay)
    return clamp(
        global_novelty * config.novelty_global_weight + personal_novelty * config.novelty_personal_weight,
        0.0,
        1.0,
    )


def build_reason(
    top_tag: Optional[str],
    distance_fit: float,
    interest_fit: float,
    quality_fit: float,
    novelty_fit: float,
    detour_fit: float,
) -> str:
    """Reason string from the dominant factor."""
    if interest_fit >= 0.6 and top_tag:
        return f"Matches your interests: {top_tag}"
    if distance_fit >= 0.7:
        return "Right along your route"
    if quality_fit >= 0.7:
        return "Highly rated by travelers"
    if novelty_fit >= 0.7:
        return "Fresh place with lower exposure"
    if detour_fit >= 0.6:
        return "Low detour impact"
    return "Good fit for your route"


def _distance_fit(candidate: Candidate, radius_m: float, config: RecommendationConfig) -> float:
    d = candidate.best_distance_m
    if d is not None and math.isfinite(d):
        route_score = math.exp(-d / max(radius_m * config.distance_decay_factor, config.distance_decay_floor_m))
    else:
        route_score = config.distance_unknown_score
    start_km = candidate.distance_to_start_m / 1000
    end_km = candidate.distance_to_end_m / 1000
    endpoint_affinity = clamp(max(1 / (1 + start_km), 1 / (1 + end_km)), 0.0, 1.0)
    return clamp(
        route_score * config.distance_route_weight + endpoint_affinity * config.distance_endpoint_weight,
        0.0,
        1.0,
    )


def _context_fit(
    mode: str,
    detour_fit: float,
    distance_fit: float,
    quality_fit: float,
    config: RecommendationConfig,
) -> float:
    bonus = 0.0
    if mode == "walking":
        bonus = distance_fit * config.walking_distance_bonus
    elif mode == "driving":
        bonus = quality_fit * config.driving_quality_bonus
    return clamp(
        detour_fit * config.context_detour_weight + distance_fit * config.context_distance_weight + bonus,
        0.0,
        1.0,
    )


def score_candidate(
    candidate: Candidate,
    samples: Sequence[SamplePoint],
    route_duration_s: Optional[float],
    mode_config: ModeConfig,
    profile: Optional[UserProfile],
    radius_m: float,
    stats: Optional[PoiQualityStats],
    user_impressions: int,
    config: RecommendationConfig,
) -> ScoredCandidate:
    """All fit scores for one candidate (coverage is set later by apply_post_filters)."""
    last = max(len(samples) - 1, 0)
    nearest = int(clamp(candidate.nearest_sample_index or 0, 0, last))
    progress = nearest / last if len(samples) > 1 else 0.0

    distance_fit = _distance_fit(candidate, radius_m, config)
    interest = compute_interest_fit(candidate.poi, profile, config)
    quality_fit = derive_quality_fit(candidate, stats, config)
    novelty_fit = derive_novelty_fit(stats, user_impressions, config)
    detour = estimate_detour(candidate, samples, mode_config, route_duration_s, config)
    context_fit = _context_fit(mode_config.mode, detour.fit, distance_fit, quality_fit, config)

    return ScoredCandidate(
        candidate=candidate,
        distance_fit=round_to(distance_fit),
        interest_fit=round_to(interest.score),
        quality_fit=round_to(quality_fit),
        novelty_fit=round_to(novelty_fit),
        detour_fit=round_to(detour.fit),
        context_fit=round_to(context_fit),
        route_segment=route_segment(progress),
        route_progress=progress,
        detour=detour,
        top_tag=interest.top_tag,
        match_tags=interest.match_tags,
        reason=build_reason(
            interest.top_tag,
            distance_fit,
            interest.score,
            quality_fit,
            novelty_fit,
            detour.fit,
        ),
    )


def dedupe_key(scored: ScoredCandidate) -> str:
    """Lowercased name plus coordinates rounded to 5 dp (about a metre)."""
    poi = scored.poi
    return f"{poi.name.lower()}|{poi.lat:.5f}|{poi.lng:.5f}"


def apply_post_filters(
    scored: Sequence[ScoredCandidate],
    radius_m: float,
    config: RecommendationConfig,
) -> Tuple[List[ScoredCandidate], FilterDropCounts]:
    """
    Drop duplicates, over-cap detours (strictly greater than the cap) and
    candidates beyond out_of_scope_factor radii; set coverage_fit on survivors.

    Segment counts for coverage use every input candidate, kept or not.
    """
    segment_counts = [0, 0, 0]
    for item in scored:
        segment_counts[item.route_segment] += 1
    max_segment = max(*segment_counts, 1)

    drops = FilterDropCounts()
    seen = set()
    kept: List[ScoredCandidate] = []
    for item in scored:
        key = dedupe_key(item)
        if key in seen:
            drops.duplicate += 1
            continue
        if item.detour.exceeds_cap():
            drops.detour += 1
            continue
        distance = item.best_distance_m
        if distance is not None and distance > radius_m * config.out_of_scope_factor:
            drops.out_of_scope += 1
            continue
        seen.add(key)
        coverage = clamp(1 - (segment_counts[item.route_segment] - 1) / max_segment, 0.0, 1.0)
        kept.append(item.model_copy(update={"coverage_fit": round_to(coverage)}))
    return kept, drops


async def enrich_candidates(
    candidates: Sequence[Candidate],
    samples: Sequence[SamplePoint],
    route: RouteResult,
    mode_config: ModeConfig,
    profile: Optional[UserProfile],
    user_id: Optional[str],
    radius_m: float,
    quality_store: PoiQualityStore,
    event_store: EventStore,
    config: RecommendationConfig,
    now: datetime,
) -> FeatureResult:
    """Score and filter recalled candidates."""
    poi_ids = [c.id for c in candidates]
    if not poi_ids:
        return FeatureResult(candidates=[], drop_counts=FilterDropCounts())

    async def _exposure() -> Dict[int, int]:
        if not user_id:
            return {}
        since = now - timedelta(days=config.personal_impression_window_days)
        return await event_store.user_impression_counts(user_id, poi_ids, since)

    stats_by_id, exposure = await asyncio.gather(
        with_deadline(
            quality_store.get_poi_quality(poi_ids, mode_config.mode),
            config.lookup_timeout_s,
            "quality lookup",
        ),
        with_deadline(_exposure(), config.lookup_timeout_s, "exposure lookup"),
    )

    preliminary = [
        score_candidate(
            candidate,
            samples,
            route.duration_s,
            mode_config,
            profile,
            radius_m,
            stats_by_id.get(candidate.id),
            exposure.get(candidate.id, 0),
            config,
        )
        for candidate in candidates
    ]
    kept, drops = apply_post_filters(preliminary, radius_m, config)
    logger.info(
        "[features] DONE scored=%s kept=%s dropped_duplicate=%s dropped_detour=%s dropped_out_of_scope=%s",
        len(preliminary),
        len(kept),
        drops.duplicate,
        drops.detour,
        drops.out_of_scope,
    )
    return FeatureResult(candidates=kept, drop_counts=drops)
