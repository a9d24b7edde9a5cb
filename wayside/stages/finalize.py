"""Final score, ordering, rank positions and per-factor explanations."""

from typing import List, Sequence

from ..models.config import RecommendationConfig
from ..models.poi import Explanation, ScoredCandidate


def build_explanations(
    candidate: ScoredCandidate,
    interest_weight: float,
    explore_weight: float,
    config: RecommendationConfig,
) -> List[Explanation]:
    """Positive factor contributions as percentages of their total, largest first."""
    factors = [
        ("distance", candidate.distance_fit * (1 - interest_weight)),
        ("interest", candidate.interest_fit * interest_weight),
        ("quality", candidate.quality_fit * config.weight_quality),
        ("novelty", candidate.novelty_fit * config.weight_novelty),
        ("context", candidate.context_fit * config.weight_context),
        ("exploration", candidate.bandit_norm * explore_weight),
    ]
    positive = [(tag, value) for tag, value in factors if value > 0]
    total = sum(value for _, value in positive)
    if not total:
        return []
    explanations = [
        Explanation(tag=tag, contribution=round(value / total * 100, 2))
        for tag, value in positive
    ]
    explanations.sort(key=lambda e: -e.contribution)
    return explanations[: config.explanation_top_k]


def finalize_selection(
    selected: Sequence[ScoredCandidate],
    limit: int,
    interest_weight: float,
    explore_weight: float,
    config: RecommendationConfig,
) -> List[ScoredCandidate]:
    """
    final = (1 - explore) * tuned_base + explore * bandit_norm - diversity_penalty.

    Sorted by final desc, tuned base desc, distance to route asc, then id; rank
    positions start at 1.
    """
    rescored = [
        c.model_copy(
            update={
                "final_score": round(
                    (1 - explore_weight) * c.tuned_base_score
                    + explore_weight * c.bandit_norm
                    - c.diversity_penalty,
                    6,
                )
            }
        )
        for c in selected
    ]
    rescored.sort(key=lambda c: (-c.final_score, -c.tuned_base_score, c.best_distance_m or 0.0, c.id))
    return [
        c.model_copy(
            update={
                "rank_position": index + 1,
                "explanations": build_explanations(c, interest_weight, explore_weight, config),
            }
        )
        for index, c in enumerate(rescored[:limit])
    ]
