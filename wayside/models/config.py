"""
Algorithm configuration: recall, features, scoring, bandit and diversity parameters.

RecommendationConfig defaults are defined here. Callers may pass a sectioned dict
(e.g. loaded from a JSON file); from_dict() flattens it and merges with these defaults.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator


class RecommendationConfig(BaseModel):
    """Configuration for the route-aware recommendation pipeline."""

    algorithm_version: str = "v2"

    # -------------------------------------------------------------------------
    # Request limits
    # -------------------------------------------------------------------------

    # Items returned when the request does not say. Clamped to [1, max_limit].
    default_limit: int = 10
    max_limit: int = 50
    # Upper bound on candidates kept after recall. Clamped to [limit, max_candidate_limit].
    default_candidate_limit: int = 180
    max_candidate_limit: int = 360

    # -------------------------------------------------------------------------
    # Candidate recall
    # -------------------------------------------------------------------------

    # Route is resampled into this many points (inclusive bounds).
    min_samples: int = 12
    max_samples: int = 72
    # Floor on the step used to decide the sample count.
    sample_count_step_floor_m: float = 80.0
    # Resampler floors: never step below 50 m, never cap below 8 samples.
    resample_min_step_m: float = 50.0
    resample_min_samples: int = 8
    # Final route vertex is appended when the last sample is further than this.
    tail_gap_m: float = 60.0

    # Corridor radius clamp applied to request overrides and mode defaults.
    min_radius_m: float = 120.0
    max_radius_m: float = 4000.0

    # Concurrent corridor lookups in flight.
    corridor_concurrency: int = 6
    # Per-sample lookup limit = clamp(ceil(candidate_limit / divisor), min, max).
    per_sample_limit_divisor: int = 10
    per_sample_limit_min: int = 12
    per_sample_limit_max: int = 28

    # Endpoint lookups (start and end) use a smaller radius.
    endpoint_radius_factor: float = 0.75
    endpoint_limit: int = 24

    # Preference lookups: top categories at start/middle/end anchors.
    preference_categories: int = 3
    preference_radius_factor: float = 1.15
    preference_limit: int = 18

    # Novelty pass runs when fewer than min(candidate_limit, novelty_target) are merged.
    novelty_target: int = 60
    novelty_bbox_pad_factor: float = 2.4
    novelty_keep_factor: float = 2.2
    novelty_min_quality: float = 0.12

    # When True, a failed recall source is logged and counted instead of failing the request.
    recall_best_effort: bool = False
    # Optional per-lookup deadline in seconds (None = no deadline).
    lookup_timeout_s: Optional[float] = None

    # -------------------------------------------------------------------------
    # Feature enrichment
    # -------------------------------------------------------------------------

    # distance_fit = route_weight * exp(-d / max(radius * decay_factor, decay_floor)) + endpoint_weight * affinity
    distance_route_weight: float = 0.72
    distance_endpoint_weight: float = 0.28
    distance_decay_factor: float = 1.15
    distance_decay_floor_m: float = 100.0
    # Route score used when distance to route is unknown.
    distance_unknown_score: float = 0.35

    # interest_fit blend across the three profile maps.
    interest_weight_tag: float = 0.5
    interest_weight_category: float = 0.2
    interest_weight_poi: float = 0.3

    # Laplace smoothing of interaction rate when no stored quality score.
    quality_prior_rate: float = 0.12
    quality_prior_count: float = 30.0

    # novelty_fit = global_weight * global + personal_weight * exp(-user_impressions / decay)
    novelty_global_weight: float = 0.55
    novelty_personal_weight: float = 0.45
    novelty_personal_decay: float = 4.0
    personal_impression_window_days: int = 30

    # Detour estimate.
    detour_fallback_factor: float = 1.9
    detour_fallback_threshold: float = 0.4
    detour_min_cap_s: float = 300.0
    detour_max_cap_s: float = 2700.0
    detour_min_ratio_cap_s: float = 120.0

    # context_fit = detour_weight * detour + distance_weight * distance + mode bonus
    context_detour_weight: float = 0.62
    context_distance_weight: float = 0.28
    walking_distance_bonus: float = 0.2
    driving_quality_bonus: float = 0.1

    # Candidates further than this many radii from the route are dropped.
    out_of_scope_factor: float = 2.5

    # -------------------------------------------------------------------------
    # Base scoring
    # base = (dw * distance + iw * interest + q * quality + n * novelty + c * context) / total
    # -------------------------------------------------------------------------

    default_interest_weight: float = 0.5
    default_explore_weight: float = 0.15
    weight_quality: float = 0.18
    weight_novelty: float = 0.10
    weight_context: float = 0.12
    # Stable pool size = min(max(limit * multiplier, floor), candidate_limit)
    stable_pool_multiplier: int = 8
    stable_pool_floor: int = 60

    # -------------------------------------------------------------------------
    # Contextual bandit (LinUCB)
    # -------------------------------------------------------------------------

    bandit_alpha: float = 0.35
    arm_min_impressions: int = 8
    arm_max_pseudo_count: int = 5000
    arm_history_days: int = 90
    bandit_norm_fallback: float = 0.5

    # -------------------------------------------------------------------------
    # Diversity (MMR)
    # -------------------------------------------------------------------------

    diversity_lambda: float = 0.72
    diversity_top_pool: int = 60
    similarity_weight_category: float = 0.52
    similarity_weight_geo: float = 0.30
    similarity_weight_tags: float = 0.18
    similarity_geo_scale_m: float = 420.0
    # Category cap: -penalty once cap picks share a category, while fewer than window are selected.
    category_cap: int = 3
    category_cap_penalty: float = 5.0
    category_cap_window: int = 10
    segment_spread_penalty: float = 0.06

    # -------------------------------------------------------------------------
    # Explanations and profile
    # -------------------------------------------------------------------------

    explanation_top_k: int = 4
    profile_top_keys: int = 6
    profile_fallback_days: int = 180
    profile_decay_days: float = 30.0

    # -------------------------------------------------------------------------
    # Event reward weights (arm history and live profile)
    # -------------------------------------------------------------------------

    event_reward_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "impression": 0.0,
            "detail_view": 1.0,
            "open_posts": 2.0,
            "save": 3.0,
            "add_via": 5.0,
            "navigate": 4.0,
            "dismiss": -1.0,
            "remove_via": -3.0,
            "like_post": 2.0,
            "favorite_post": 3.0,
        }
    )

    @model_validator(mode="after")
    def check_blends(self):
        interest = self.interest_weight_tag + self.interest_weight_category + self.interest_weight_poi
        if abs(interest - 1.0) > 0.01:
            raise ValueError(f"Interest blend weights must sum to 1.0, got {interest}")
        similarity = (
            self.similarity_weight_category + self.similarity_weight_geo + self.similarity_weight_tags
        )
        if abs(similarity - 1.0) > 0.01:
            raise ValueError(f"Similarity weights must sum to 1.0, got {similarity}")
        if not 0.0 < self.diversity_lambda <= 1.0:
            raise ValueError(f"diversity_lambda must be in (0, 1], got {self.diversity_lambda}")
        if self.min_samples > self.max_samples:
            raise ValueError("min_samples must not exceed max_samples")
        return self

    @classmethod
    def from_dict(cls, config_dict: Dict) -> "RecommendationConfig":
        """Create config from a sectioned dictionary (e.g., loaded from JSON)."""
        flat = {}
        for section in ("limits", "recall", "features", "scoring", "bandit", "diversity", "profile"):
            if section in config_dict and isinstance(config_dict[section], dict):
                flat.update(config_dict[section])
        if "interest_blend" in config_dict:
            ib = config_dict["interest_blend"]
            for key in ("tag", "category", "poi"):
                if key in ib:
                    flat[f"interest_weight_{key}"] = ib[key]
        if "event_rewards" in config_dict:
            flat["event_reward_weights"] = dict(config_dict["event_rewards"])
        # Top-level flat keys are accepted too
        flat.update({k: v for k, v in config_dict.items() if not isinstance(v, dict)})
        allowed = set(cls.model_fields)
        filtered = {k: v for k, v in flat.items() if k in allowed}
        return cls.model_validate(filtered)


DEFAULT_CONFIG = RecommendationConfig()


def resolve_config(config: Optional["RecommendationConfig"]) -> "RecommendationConfig":
    """Return config or DEFAULT_CONFIG when none is provided."""
    return config if config is not None else DEFAULT_CONFIG
