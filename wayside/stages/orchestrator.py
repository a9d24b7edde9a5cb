"""
Recommendation orchestrator: runs the stages in order for one request.

    route -> profile -> recall -> features -> base scoring -> stable pool
          -> bandit -> diversity -> finalize

Every stage is timed into diagnostics.latency_ms. A request with no route
returns a "no_route" result; upstream failures propagate as UpstreamError.
"""

import logging
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from ..models.config import RecommendationConfig, resolve_config
from ..models.mode import get_mode_config
from ..models.result import (
    DebugInfo,
    Diagnostics,
    ProfileSummary,
    RecommendationRequest,
    RecommendationResult,
)
from ..services.event_store import EventStore
from ..services.feature_store import InterestStore, PoiQualityStore
from ..services.poi_store import PoiStore
from ..services.routing import RoutingEngine
from ..utils.scores import as_utc, clamp, normalize_weight
from .bandit import apply_bandit_bonus, skip_bandit
from .base_scoring import apply_base_scores, select_stable_pool
from .diversity import apply_diversity_rerank
from .features import enrich_candidates
from .finalize import finalize_selection
from .profile import fetch_user_profile
from .recall import recall_candidates
from .route_builder import build_route

logger = logging.getLogger(__name__)


@dataclass
class PipelineDeps:
    """The collaborators one orchestration call reads from."""

    routing: RoutingEngine
    poi_store: PoiStore
    quality_store: PoiQualityStore
    interest_store: InterestStore
    event_store: EventStore


class _StageTimer:
    def __init__(self):
        self.started = time.monotonic()
        self.latency_ms: Dict[str, float] = {}

    def record(self, name: str, since: float) -> float:
        now = time.monotonic()
        self.latency_ms[name] = round((now - since) * 1000, 2)
        return now

    def finish(self) -> Dict[str, float]:
        self.record("total_ms", self.started)
        return self.latency_ms


def _request_limits(request: RecommendationRequest, config: RecommendationConfig):
    limit = int(clamp(request.limit or config.default_limit, 1, config.max_limit))
    candidate_limit = int(
        clamp(
            request.candidate_limit or config.default_candidate_limit,
            limit,
            config.max_candidate_limit,
        )
    )
    per_sample_limit = int(
        clamp(
            math.ceil(candidate_limit / config.per_sample_limit_divisor),
            config.per_sample_limit_min,
            config.per_sample_limit_max,
        )
    )
    return limit, candidate_limit, per_sample_limit


async def run_recommendation(
    request: RecommendationRequest,
    deps: PipelineDeps,
    config: Optional[RecommendationConfig] = None,
    now: Optional[datetime] = None,
) -> RecommendationResult:
    """
    Produce a ranked, explained list of POIs along the requested route.

    Args:
        request: Route endpoints, user, mode, weights and limits.
        deps: Routing engine and stores.
        config: Algorithm parameters (defaults to DEFAULT_CONFIG).
        now: Reference time for history windows and the bandit hour context.

    Returns:
        RecommendationResult with status "ok", or "no_route" when routing
        found nothing.
    """
    config = resolve_config(config)
    now = as_utc(now)
    timer = _StageTimer()

    request_id = request.request_id or str(uuid.uuid4())
    limit, candidate_limit, per_sample_limit = _request_limits(request, config)
    interest_weight = normalize_weight(request.interest_weight, config.default_interest_weight)
    explore_weight = normalize_weight(request.explore_weight, config.default_explore_weight)
    distance_weight = 1 - interest_weight

    mode_config = get_mode_config(request.mode, request.mode_defaults)
    waypoints = [request.start, *request.via, request.end]

    mark = time.monotonic()
    outcome = await build_route(deps.routing, waypoints, mode_config)
    mark = timer.record("route_ms", mark)

    if outcome.route is None:
        logger.info("[reco] NO_ROUTE request_id=%s mode=%s", request_id, mode_config.mode)
        return RecommendationResult(
            status="no_route",
            request_id=request_id,
            algorithm_version=config.algorithm_version,
            bucket=request.bucket,
            mode=mode_config.mode,
            mode_fallback=outcome.fallback_used,
            warning=outcome.warning,
            diagnostics=Diagnostics(latency_ms=timer.finish()),
        )

    effective_mode = get_mode_config(outcome.resolved_mode, request.mode_defaults)

    profile = await fetch_user_profile(
        request.user_id,
        deps.interest_store,
        deps.event_store,
        deps.poi_store,
        config,
        now,
    )
    mark = timer.record("profile_ms", mark)

    recall = await recall_candidates(
        outcome.route,
        request.start,
        request.end,
        effective_mode,
        profile,
        deps.poi_store,
        deps.quality_store,
        config,
        category=request.category,
        candidate_limit=candidate_limit,
        per_sample_limit=per_sample_limit,
        radius_override=request.radius_m,
    )
    mark = timer.record("recall_ms", mark)

    features = await enrich_candidates(
        recall.candidates,
        recall.samples,
        outcome.route,
        effective_mode,
        profile,
        request.user_id,
        recall.radius_m,
        deps.quality_store,
        deps.event_store,
        config,
        now,
    )
    mark = timer.record("features_ms", mark)

    scored = apply_base_scores(features.candidates, interest_weight, config)
    stable_pool = select_stable_pool(scored, limit, candidate_limit, config)

    if request.bucket == "treatment":
        bandit = await apply_bandit_bonus(
            stable_pool,
            effective_mode.mode,
            explore_weight,
            deps.event_store,
            config,
            now,
        )
    else:
        bandit = skip_bandit(stable_pool, "control_bucket")
    mark = timer.record("bandit_ms", mark)

    diversity = apply_diversity_rerank(
        bandit.candidates,
        limit,
        config,
        top_pool=min(config.diversity_top_pool, len(bandit.candidates)),
    )
    mark = timer.record("diversity_ms", mark)

    items = finalize_selection(diversity.selected, limit, interest_weight, explore_weight, config)
    timer.record("finalize_ms", mark)

    diagnostics = Diagnostics(
        recall_counts=recall.counts,
        total_candidates=len(recall.candidates),
        after_feature_filters=len(features.candidates),
        stable_pool_size=len(stable_pool),
        filter_drop_counts=features.drop_counts,
        latency_ms=timer.finish(),
        bandit=bandit.diagnostics,
        diversity=diversity.diagnostics,
    )

    logger.info(
        "[reco] DONE request_id=%s bucket=%s mode=%s items=%s candidates=%s total_ms=%s",
        request_id,
        request.bucket,
        effective_mode.mode,
        len(items),
        len(recall.candidates),
        diagnostics.latency_ms.get("total_ms"),
    )

    return RecommendationResult(
        status="ok",
        request_id=request_id,
        algorithm_version=config.algorithm_version,
        bucket=request.bucket,
        mode=effective_mode.mode,
        mode_fallback=outcome.fallback_used,
        warning=outcome.warning,
        route=outcome.route,
        items=items,
        profile=ProfileSummary(
            user_id=request.user_id,
            tags=profile.top_tags,
            categories=profile.top_categories,
            personalized=profile.has_profile,
            source=profile.source,
            tuning={
                "interest_weight": interest_weight,
                "distance_weight": distance_weight,
                "explore_weight": explore_weight,
            },
        ),
        diagnostics=diagnostics,
        debug=(
            DebugInfo(
                sample_step_m=recall.sample_step_m,
                samples=len(recall.samples),
                radius_m=recall.radius_m,
                candidates=len(recall.candidates),
            )
            if request.debug
            else None
        ),
    )
