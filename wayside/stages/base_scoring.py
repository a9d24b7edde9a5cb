"""
Base scoring: blend the five fit scores into a normalized weighted score.

Two scores are kept per candidate:
- base_score uses a fixed 0.5/0.5 distance/interest split and only picks the
  stable pool, so later stages see the same candidates whatever the tuning.
- tuned_base_score uses the user's configured weights.
"""

from typing import List, Sequence

from ..models.config import RecommendationConfig
from ..models.poi import ScoredCandidate
from ..utils.scores import clamp, round_to

STABLE_DISTANCE_WEIGHT = 0.5
STABLE_INTEREST_WEIGHT = 0.5


def compute_weighted_score(
    scored: ScoredCandidate,
    distance_weight: float,
    interest_weight: float,
    config: RecommendationConfig,
) -> float:
    """Weighted sum of fits divided by the total weight, clamped to [0, 1]."""
    total = (
        distance_weight
        + interest_weight
        + config.weight_quality
        + config.weight_novelty
        + config.weight_context
    )
    if total <= 0:
        return 0.0
    raw = (
        scored.distance_fit * distance_weight
        + scored.interest_fit * interest_weight
        + scored.quality_fit * config.weight_quality
        + scored.novelty_fit * config.weight_novelty
        + scored.context_fit * config.weight_context
    )
    return clamp(raw / total, 0.0, 1.0)


def apply_base_scores(
    candidates: Sequence[ScoredCandidate],
    interest_weight: float,
    config: RecommendationConfig,
) -> List[ScoredCandidate]:
    """Attach base_score (0.5/0.5) and tuned_base_score (user weights) to each candidate."""
    distance_weight = 1 - interest_weight
    return [
        c.model_copy(
            update={
                "base_score": round_to(
                    compute_weighted_score(c, STABLE_DISTANCE_WEIGHT, STABLE_INTEREST_WEIGHT, config)
                ),
                "tuned_base_score": round_to(
                    compute_weighted_score(c, distance_weight, interest_weight, config)
                ),
            }
        )
        for c in candidates
    ]


def stable_pool_size(limit: int, candidate_limit: int, config: RecommendationConfig) -> int:
    return min(max(limit * config.stable_pool_multiplier, config.stable_pool_floor), candidate_limit)


def select_stable_pool(
    candidates: Sequence[ScoredCandidate],
    limit: int,
    candidate_limit: int,
    config: RecommendationConfig,
) -> List[ScoredCandidate]:
    """Top candidates by base_score desc, then distance to route asc, then id."""
    ordered = sorted(
        candidates,
        key=lambda c: (-c.base_score, c.best_distance_m or 0.0, c.id),
    )
    return ordered[: stable_pool_size(limit, candidate_limit, config)]
