"""Base scoring, stable pool and the LinUCB exploration layer."""

import asyncio
import math
from datetime import timedelta

import numpy as np
import pytest

from wayside.models.event import RecommendationEvent
from wayside.models.stats import ArmHistory
from wayside.stages.bandit import (
    ARM_DIM,
    ArmState,
    apply_bandit_bonus,
    build_arm_key,
    build_arm_state,
    build_context_vector,
    predict_ucb,
    skip_bandit,
)
from wayside.stages.base_scoring import apply_base_scores, compute_weighted_score, select_stable_pool


class TestBaseScoring:
    def test_weighted_score_is_normalized(self, make_scored, config):
        c = make_scored(1, fit=1.0)
        assert compute_weighted_score(c, 0.3, 0.7, config) == pytest.approx(1.0)
        c = make_scored(2, fit=0.0)
        assert compute_weighted_score(c, 0.3, 0.7, config) == 0.0

    def test_stable_base_ignores_user_weights(self, make_scored, config):
        c = make_scored(1, distance_fit=1.0, interest_fit=0.0)
        low, high = apply_base_scores([c], 0.9, config)[0], apply_base_scores([c], 0.1, config)[0]
        assert low.base_score == high.base_score
        assert high.tuned_base_score > low.tuned_base_score
        total = 1.0 + 0.18 + 0.10 + 0.12
        assert low.base_score == pytest.approx((0.5 + 0.5 * 0.18 + 0.5 * 0.10 + 0.5 * 0.12) / total, abs=1e-6)

    def test_stable_pool_order_and_size(self, make_scored, config):
        rows = apply_base_scores(
            [make_scored(i, fit=0.1 * (i % 10), best_distance_m=100.0 - i) for i in range(1, 80)],
            0.5,
            config,
        )
        pool = select_stable_pool(rows, limit=5, candidate_limit=180, config=config)
        assert len(pool) == 60
        keys = [(-c.base_score, c.best_distance_m, c.id) for c in pool]
        assert keys == sorted(keys)
        assert len(select_stable_pool(rows, limit=5, candidate_limit=20, config=config)) == 20
        assert len(select_stable_pool(rows, limit=10, candidate_limit=360, config=config)) == 79


class TestArmState:
    def test_arm_key(self):
        assert build_arm_key("walking", " Cafe ") == "walking:cafe"
        assert build_arm_key("driving", None) == "driving:unknown"

    def test_context_vector(self, make_scored):
        vector = build_context_vector(make_scored(1, fit=0.4), 1.7, 6)
        assert vector.shape == (ARM_DIM,)
        assert vector[7] == 1.0
        assert vector[8] == pytest.approx(1.0)
        assert vector[9] == pytest.approx(0.0, abs=1e-12)

    def test_empty_state(self, config):
        state = build_arm_state("driving:cafe", [], None, config)
        assert np.array_equal(state.design_matrix, np.eye(ARM_DIM))
        assert np.allclose(state.inverse, np.eye(ARM_DIM))
        assert not state.theta.any()
        assert not state.sufficient
        # Pure exploration term: alpha * |x|.
        x = np.ones(ARM_DIM)
        assert predict_ucb(state, x, 0.35) == pytest.approx(0.35 * math.sqrt(ARM_DIM))

    def test_rank_one_update(self, config):
        c = np.full(ARM_DIM, 0.5)
        state = build_arm_state("driving:cafe", [c, c], ArmHistory(category_group="cafe", impressions=20, reward_sum=6.0), config)
        assert state.sufficient
        assert np.allclose(state.design_matrix, np.eye(ARM_DIM) + 20 * np.outer(c, c))
        assert np.allclose(state.bias, 6.0 * c)
        assert np.allclose(state.design_matrix @ state.theta, state.bias)

    def test_pseudo_count_is_capped(self, config):
        c = np.full(ARM_DIM, 0.1)
        state = build_arm_state("d:x", [c], ArmHistory(category_group="x", impressions=10_000), config)
        assert np.allclose(state.design_matrix, np.eye(ARM_DIM) + 5000 * np.outer(c, c))

    def test_empty_classmethod(self):
        state = ArmState.empty("driving:park")
        assert state.summary().impressions == 0


def _impressions(category_poi_id, count, now, mode="driving", event_type="impression"):
    return [
        RecommendationEvent(
            user_id=f"user-{i}",
            request_id=f"req-{event_type}-{category_poi_id}-{i}",
            poi_id=category_poi_id,
            mode=mode,
            event_type=event_type,
            ts=now - timedelta(days=1),
        )
        for i in range(count)
    ]


class TestApplyBanditBonus:
    def _pool(self, make_scored, config):
        rows = [
            make_scored(1, category="cafe", fit=0.6),
            make_scored(2, category="cafe", fit=0.5, lng=-0.09),
            make_scored(6, category="museum", fit=0.55, lng=-0.08),
        ]
        return apply_base_scores(rows, 0.5, config)

    def test_no_candidates(self, event_store, config, now):
        result = asyncio.run(apply_bandit_bonus([], "driving", 0.15, event_store, config, now))
        assert not result.diagnostics.enabled
        assert result.diagnostics.reason == "no_candidates"

    def test_insufficient_history_disables_exploration(self, make_scored, event_store, config, now):
        asyncio.run(event_store.insert_events(_impressions(1, 3, now)))
        pool = self._pool(make_scored, config)
        result = asyncio.run(apply_bandit_bonus(pool, "driving", 0.15, event_store, config, now))
        assert not result.diagnostics.enabled
        assert result.diagnostics.reason == "insufficient_arm_history"
        assert result.diagnostics.arms["driving:cafe"].impressions == 3
        for c in result.candidates:
            assert c.bandit_raw == 0.0
            assert c.bandit_norm == 0.0
            assert c.pre_diversity_score == c.tuned_base_score
            assert c.arm_key is not None

    def test_sufficient_arm_gets_exploration_score(self, make_scored, event_store, config, now):
        asyncio.run(event_store.insert_events(_impressions(1, 10, now)))
        pool = self._pool(make_scored, config)
        result = asyncio.run(apply_bandit_bonus(pool, "driving", 0.2, event_store, config, now))
        diag = result.diagnostics
        assert diag.enabled
        assert diag.alpha == config.bandit_alpha
        assert diag.arms["driving:cafe"].sufficient
        assert not diag.arms["driving:museum"].sufficient

        by_id = {c.id: c for c in result.candidates}
        assert by_id[6].bandit_raw == 0.0
        assert by_id[6].bandit_norm == 0.0
        assert max(by_id[1].bandit_norm, by_id[2].bandit_norm) == pytest.approx(1.0)
        for c in result.candidates:
            expected = 0.8 * c.tuned_base_score + 0.2 * c.bandit_norm
            assert c.pre_diversity_score == pytest.approx(expected, abs=2e-6)
            assert c.bandit_bonus == pytest.approx(c.bandit_norm - c.tuned_base_score, abs=2e-6)

    def test_history_for_other_mode_is_ignored(self, make_scored, event_store, config, now):
        asyncio.run(event_store.insert_events(_impressions(1, 10, now, mode="walking")))
        pool = self._pool(make_scored, config)
        result = asyncio.run(apply_bandit_bonus(pool, "driving", 0.2, event_store, config, now))
        assert result.diagnostics.reason == "insufficient_arm_history"

    def test_skip_bandit(self, make_scored, config):
        pool = self._pool(make_scored, config)
        result = skip_bandit(pool, "control_bucket")
        assert result.diagnostics.reason == "control_bucket"
        assert result.diagnostics.arms == {}
        assert all(c.pre_diversity_score == c.tuned_base_score for c in result.candidates)
