"""
Pipeline stages, in execution order.

route_builder -> profile -> recall -> features -> base_scoring -> bandit
-> diversity -> finalize, wired together by the orchestrator.
"""

from .bandit import apply_bandit_bonus, build_arm_key, build_arm_state, build_context_vector, predict_ucb
from .base_scoring import apply_base_scores, compute_weighted_score, select_stable_pool
from .diversity import apply_diversity_rerank, similarity
from .features import apply_post_filters, enrich_candidates, estimate_detour
from .finalize import build_explanations, finalize_selection
from .orchestrator import PipelineDeps, run_recommendation
from .profile import compute_interest_fit, fetch_user_profile
from .recall import recall_candidates, sample_route_points
from .route_builder import build_route

__all__ = [
    "PipelineDeps",
    "apply_bandit_bonus",
    "apply_base_scores",
    "apply_diversity_rerank",
    "apply_post_filters",
    "build_arm_key",
    "build_arm_state",
    "build_context_vector",
    "build_explanations",
    "build_route",
    "compute_interest_fit",
    "compute_weighted_score",
    "enrich_candidates",
    "estimate_detour",
    "fetch_user_profile",
    "finalize_selection",
    "predict_ucb",
    "recall_candidates",
    "run_recommendation",
    "sample_route_points",
    "select_stable_pool",
    "similarity",
]
