"""
Contextual bandit (LinUCB) exploration bonus.

Arms are (mode, category group) pairs. Each arm's state is rebuilt per request
from aggregated event history: the centroid of the arm's candidate context
vectors, weighted by the arm's impression count, forms a rank-1 update of the
identity design matrix. Nothing is persisted between requests.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..models.config import RecommendationConfig
from ..models.poi import ScoredCandidate, normalize_category
from ..models.result import ArmSummary, BanditDiagnostics
from ..models.stats import ArmHistory
from ..services.event_store import EventStore
from ..utils.concurrency import with_deadline
from ..utils.linalg import invert_matrix, min_max_normalize
from ..utils.scores import clamp, round_to

logger = logging.getLogger(__name__)

ARM_DIM = 10


@dataclass
class ArmState:
    arm_key: str
    design_matrix: np.ndarray
    inverse: np.ndarray
    bias: np.ndarray
    theta: np.ndarray
    impressions: int = 0
    reward_sum: float = 0.0
    sufficient: bool = False

    @classmethod
    def empty(cls, arm_key: str) -> "ArmState":
        identity = np.eye(ARM_DIM)
        return cls(
            arm_key=arm_key,
            design_matrix=identity,
            inverse=invert_matrix(identity),
            bias=np.zeros(ARM_DIM),
            theta=np.zeros(ARM_DIM),
        )

    def summary(self) -> ArmSummary:
        return ArmSummary(
            impressions=self.impressions,
            reward_sum=round(self.reward_sum, 4),
            sufficient=self.sufficient,
        )


@dataclass
class BanditResult:
    candidates: List[ScoredCandidate]
    diagnostics: BanditDiagnostics = field(default_factory=BanditDiagnostics)


def build_arm_key(mode: str, category: Optional[str]) -> str:
    return f"{mode}:{normalize_category(category)}"


def build_context_vector(candidate: ScoredCandidate, rank_norm: float, hour: int) -> np.ndarray:
    """Seven fits, clamped rank position and the hour of day on the unit circle."""
    phase = ((hour % 24) / 24) * 2 * math.pi
    return np.array(
        [
            candidate.distance_fit,
            candidate.detour_fit,
            candidate.interest_fit,
            candidate.quality_fit,
            candidate.novelty_fit,
            candidate.context_fit,
            candidate.coverage_fit,
            clamp(rank_norm, 0.0, 1.0),
            math.sin(phase),
            math.cos(phase),
        ],
        dtype=float,
    )


def build_arm_state(
    arm_key: str,
    vectors: Sequence[np.ndarray],
    history: Optional[ArmHistory],
    config: RecommendationConfig,
) -> ArmState:
    """
    A = I + pseudo * c c^T and b = reward_sum * c, where c is the centroid of
    the arm's context vectors and pseudo is the clamped impression count.
    """
    if not vectors:
        return ArmState.empty(arm_key)

    centroid = np.mean(np.vstack(vectors), axis=0)
    impressions = history.impressions if history is not None else 0
    reward_sum = history.reward_sum if history is not None else 0.0
    pseudo_count = clamp(impressions, 0, config.arm_max_pseudo_count)

    design = np.eye(ARM_DIM) + pseudo_count * np.outer(centroid, centroid)
    bias = reward_sum * centroid
    inverse = invert_matrix(design)
    return ArmState(
        arm_key=arm_key,
        design_matrix=design,
        inverse=inverse,
        bias=bias,
        theta=inverse @ bias,
        impressions=impressions,
        reward_sum=reward_sum,
        sufficient=impressions >= config.arm_min_impressions,
    )


def predict_ucb(state: ArmState, context: np.ndarray, alpha: float) -> float:
    """theta . x + alpha * sqrt(x^T A^-1 x); a non-finite variance adds nothing."""
    mean = float(state.theta @ context)
    variance = float(context @ state.inverse @ context)
    bonus = math.sqrt(max(variance, 0.0)) if math.isfinite(variance) else 0.0
    return mean + alpha * bonus


def skip_bandit(candidates: Sequence[ScoredCandidate], reason: str) -> BanditResult:
    """Zero bandit fields; the pre-diversity score is the tuned base score."""
    return BanditResult(
        candidates=[
            c.model_copy(
                update={
                    "bandit_raw": 0.0,
                    "bandit_norm": 0.0,
                    "bandit_bonus": 0.0,
                    "pre_diversity_score": c.tuned_base_score,
                }
            )
            for c in candidates
        ],
        diagnostics=BanditDiagnostics(enabled=False, reason=reason),
    )


async def apply_bandit_bonus(
    candidates: Sequence[ScoredCandidate],
    mode: str,
    explore_weight: float,
    event_store: EventStore,
    config: RecommendationConfig,
    now: datetime,
) -> BanditResult:
    """
    Score each candidate's arm with UCB and blend the normalized score into
    pre_diversity_score. Disabled, with raw and normalized scores zero, when no
    arm has enough impressions.
    """
    if not candidates:
        return BanditResult(candidates=[], diagnostics=BanditDiagnostics(enabled=False, reason="no_candidates"))

    n = len(candidates)
    ranked = []
    grouped: Dict[str, List[np.ndarray]] = {}
    for index, candidate in enumerate(candidates):
        rank_norm = index / (n - 1) if n > 1 else 0.0
        arm_key = build_arm_key(mode, candidate.poi.category)
        context = build_context_vector(candidate, rank_norm, now.hour)
        grouped.setdefault(arm_key, []).append(context)
        ranked.append((candidate, arm_key, rank_norm, context))

    groups = sorted({candidate.category_group for candidate in candidates})
    history = await with_deadline(
        event_store.arm_history(
            mode,
            groups,
            now - timedelta(days=config.arm_history_days),
            config.event_reward_weights,
        ),
        config.lookup_timeout_s,
        "arm history lookup",
    )

    states = {
        arm_key: build_arm_state(arm_key, vectors, history.get(arm_key.split(":", 1)[1]), config)
        for arm_key, vectors in grouped.items()
    }
    arms = {arm_key: state.summary() for arm_key, state in states.items()}

    if not any(state.sufficient for state in states.values()):
        logger.info("[bandit] DISABLED reason=insufficient_arm_history arms=%s", len(states))
        result = skip_bandit(
            [c.model_copy(update={"arm_key": k, "rank_norm": r}) for c, k, r, _ in ranked],
            "insufficient_arm_history",
        )
        result.diagnostics.arms = arms
        return result

    raw_scores = [
        predict_ucb(states[arm_key], context, config.bandit_alpha) if states[arm_key].sufficient else 0.0
        for _, arm_key, _, context in ranked
    ]
    norm_scores = min_max_normalize(raw_scores, config.bandit_norm_fallback)

    blended = []
    for (candidate, arm_key, rank_norm, _), raw, norm in zip(ranked, raw_scores, norm_scores):
        tuned = candidate.tuned_base_score
        blended.append(
            candidate.model_copy(
                update={
                    "arm_key": arm_key,
                    "rank_norm": rank_norm,
                    "bandit_raw": round_to(raw),
                    "bandit_norm": round_to(norm),
                    "bandit_bonus": round_to(norm - tuned),
                    "pre_diversity_score": round_to((1 - explore_weight) * tuned + explore_weight * norm),
                }
            )
        )

    logger.info(
        "[bandit] ENABLED arms=%s sufficient=%s candidates=%s",
        len(states),
        sum(1 for s in states.values() if s.sufficient),
        len(blended),
    )
    return BanditResult(
        candidates=blended,
        diagnostics=BanditDiagnostics(
            enabled=True,
            alpha=config.bandit_alpha,
            explore_weight=explore_weight,
            arms=arms,
        ),
    )
