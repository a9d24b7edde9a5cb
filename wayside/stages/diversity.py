"""
Diversity reranker: greedy MMR selection with category and segment spread.

Each step picks the pool candidate maximizing
    lambda * pre_diversity_score - (1 - lambda) * max_similarity_to_selected
with a hard penalty once a category is used too often in the first picks and
a soft penalty when route segments present in the pool are still uncovered.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..models.config import RecommendationConfig
from ..models.poi import ScoredCandidate
from ..models.result import DiversityDiagnostics
from ..utils.geo import haversine_m
from ..utils.scores import round_to

logger = logging.getLogger(__name__)


@dataclass
class DiversityResult:
    selected: List[ScoredCandidate]
    diagnostics: DiversityDiagnostics


def tag_jaccard(a: ScoredCandidate, b: ScoredCandidate) -> float:
    tags_a = {t.lower() for t in a.poi.tags}
    tags_b = {t.lower() for t in b.poi.tags}
    if not tags_a or not tags_b:
        return 0.0
    return len(tags_a & tags_b) / len(tags_a | tags_b)


def similarity(a: ScoredCandidate, b: ScoredCandidate, config: RecommendationConfig) -> float:
    """Same category, geographic proximity and tag overlap, blended."""
    same_category = 1.0 if a.category_group == b.category_group else 0.0
    distance = haversine_m(a.poi.lat, a.poi.lng, b.poi.lat, b.poi.lng)
    geo = math.exp(-max(distance, 0.0) / config.similarity_geo_scale_m)
    return (
        same_category * config.similarity_weight_category
        + geo * config.similarity_weight_geo
        + tag_jaccard(a, b) * config.similarity_weight_tags
    )


def _missing_segments(pool: Sequence[ScoredCandidate], covered: Dict[int, int]) -> set:
    return {c.route_segment for c in pool} - set(covered)


def apply_diversity_rerank(
    candidates: Sequence[ScoredCandidate],
    limit: int,
    config: RecommendationConfig,
    top_pool: Optional[int] = None,
) -> DiversityResult:
    """
    Select up to limit candidates from the top of the pool.

    Ties on the MMR score go to the candidate earlier in the pool order, so the
    output depends only on the inputs.
    """
    top_pool = top_pool or config.diversity_top_pool
    lam = config.diversity_lambda
    diagnostics = DiversityDiagnostics(mmr_lambda=lam, top_pool=top_pool)
    if not candidates:
        return DiversityResult(selected=[], diagnostics=diagnostics)

    pool = sorted(
        candidates,
        key=lambda c: (-c.pre_diversity_score, -c.tuned_base_score, c.id),
    )[:top_pool]

    selected: List[ScoredCandidate] = []
    category_counts: Dict[str, int] = {}
    segment_counts: Dict[int, int] = {}

    while len(selected) < limit and pool:
        missing = _missing_segments(pool, segment_counts)
        best_index = 0
        best_score = -math.inf
        best_penalty = 0.0

        for index, candidate in enumerate(pool):
            max_sim = max((similarity(candidate, s, config) for s in selected), default=0.0)
            score = lam * candidate.pre_diversity_score - (1 - lam) * max_sim

            if (
                len(selected) < config.category_cap_window
                and category_counts.get(candidate.category_group, 0) >= config.category_cap
            ):
                score -= config.category_cap_penalty

            segment = candidate.route_segment
            if missing and segment not in missing and segment_counts.get(segment, 0) >= 1:
                score -= config.segment_spread_penalty

            if score > best_score:
                best_index, best_score = index, score
                best_penalty = (1 - lam) * max_sim

        picked = pool.pop(best_index)
        category_counts[picked.category_group] = category_counts.get(picked.category_group, 0) + 1
        segment_counts[picked.route_segment] = segment_counts.get(picked.route_segment, 0) + 1
        selected.append(
            picked.model_copy(
                update={
                    "diversity_penalty": round_to(best_penalty),
                    "final_score": round_to(picked.pre_diversity_score - best_penalty),
                }
            )
        )

    diagnostics.category_counts = category_counts
    diagnostics.segment_counts = segment_counts
    logger.debug(
        "[diversity] SELECTED count=%s categories=%s segments=%s",
        len(selected),
        category_counts,
        segment_counts,
    )
    return DiversityResult(selected=selected, diagnostics=diagnostics)
