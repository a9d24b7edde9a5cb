"""End-to-end orchestration over the seeded London corridor."""

import asyncio
from datetime import timedelta

import pytest

from wayside.config import ServiceConfig
from wayside.models.event import RecommendationEvent
from wayside.models.result import RecommendationRequest
from wayside.services.poi_store import InMemoryPoiStore
from wayside.stages.orchestrator import PipelineDeps, run_recommendation
from wayside.state import AppState

STAGE_TIMINGS = {
    "route_ms",
    "profile_ms",
    "recall_ms",
    "features_ms",
    "bandit_ms",
    "diversity_ms",
    "finalize_ms",
    "total_ms",
}


def _request(start, end, **kwargs):
    return RecommendationRequest(start=start, end=end, **kwargs)


class CatalogPoiStore:
    """A PoiStore that is not an InMemoryPoiStore, like a database-backed one."""

    def __init__(self, rows):
        self._rows = InMemoryPoiStore(rows)

    async def nearby(self, lat, lng, radius_m, limit, category=None):
        return await self._rows.nearby(lat, lng, radius_m, limit, category)

    async def within_bounds(self, min_lat, max_lat, min_lng, max_lng, limit=None):
        return await self._rows.within_bounds(min_lat, max_lat, min_lng, max_lng, limit)

    async def get_pois(self, poi_ids):
        return await self._rows.get_pois(poi_ids)

    def category_of(self, poi_id):
        return self._rows.category_of(poi_id)


class TestRunRecommendation:
    def test_cold_start_treatment(self, deps, start, end, config, now):
        request = _request(start, end, limit=5, request_id="req-1")
        result = asyncio.run(run_recommendation(request, deps, config, now))

        assert result.status == "ok"
        assert result.request_id == "req-1"
        assert result.mode == "driving"
        assert not result.mode_fallback
        assert len(result.items) == 5
        assert [c.rank_position for c in result.items] == [1, 2, 3, 4, 5]
        assert len({c.id for c in result.items}) == 5
        scores = [c.final_score for c in result.items]
        assert scores == sorted(scores, reverse=True)
        assert 15 not in {c.id for c in result.items}
        for c in result.items:
            assert c.explanations
            assert c.bandit_norm == 0.0

        diag = result.diagnostics
        assert diag.bandit.reason == "insufficient_arm_history"
        assert set(diag.latency_ms) == STAGE_TIMINGS
        assert diag.total_candidates >= diag.after_feature_filters >= diag.stable_pool_size >= 5
        assert sum(diag.diversity.category_counts.values()) == 5
        assert all(count <= 3 for count in diag.diversity.category_counts.values())

        assert result.profile.tuning == {
            "interest_weight": 0.5,
            "distance_weight": 0.5,
            "explore_weight": 0.15,
        }
        assert result.debug is None

    def test_no_route(self, fake_router, poi_store, quality_store, interest_store, event_store, start, end, config, now):
        deps = PipelineDeps(
            routing=fake_router(no_route={"driving"}),
            poi_store=poi_store,
            quality_store=quality_store,
            interest_store=interest_store,
            event_store=event_store,
        )
        result = asyncio.run(run_recommendation(_request(start, end), deps, config, now))
        assert result.status == "no_route"
        assert result.items == []
        assert result.route is None
        assert result.warning
        assert set(result.diagnostics.latency_ms) == {"route_ms", "total_ms"}

    def test_mode_fallback(self, fake_router, poi_store, quality_store, interest_store, event_store, start, end, config, now):
        deps = PipelineDeps(
            routing=fake_router(unavailable={"walking"}),
            poi_store=poi_store,
            quality_store=quality_store,
            interest_store=interest_store,
            event_store=event_store,
        )
        result = asyncio.run(run_recommendation(_request(start, end, mode="walking"), deps, config, now))
        assert result.status == "ok"
        assert result.mode == "driving"
        assert result.mode_fallback
        assert "fallback to driving" in result.warning

    def test_control_bucket_skips_exploration(self, deps, start, end, config, now):
        request = _request(start, end, limit=5, bucket="control", explore_weight=0.4)
        result = asyncio.run(run_recommendation(request, deps, config, now))
        assert result.bucket == "control"
        assert result.diagnostics.bandit.reason == "control_bucket"
        assert not result.diagnostics.bandit.enabled
        for c in result.items:
            assert c.bandit_norm == 0.0
            assert c.pre_diversity_score == c.tuned_base_score

    def test_debug_and_weights(self, deps, start, end, config, now):
        request = _request(start, end, debug=True, interest_weight=80, explore_weight=0.3)
        result = asyncio.run(run_recommendation(request, deps, config, now))
        assert result.debug.radius_m == 500
        assert result.debug.samples > 0
        assert result.profile.tuning["interest_weight"] == pytest.approx(0.8)
        assert result.profile.tuning["distance_weight"] == pytest.approx(0.2)
        assert result.profile.tuning["explore_weight"] == pytest.approx(0.3)

    def test_limit_is_clamped(self, deps, start, end, config, now):
        result = asyncio.run(run_recommendation(_request(start, end, limit=-3), deps, config, now))
        assert len(result.items) == 1

    def test_zero_exploration_keeps_tuned_order(self, deps, event_store, start, end, config, now):
        asyncio.run(
            event_store.insert_events(
                [
                    RecommendationEvent(
                        user_id=f"user-{i}",
                        request_id=f"seen-{i}",
                        poi_id=1,
                        event_type="impression",
                        ts=now - timedelta(days=1),
                    )
                    for i in range(10)
                ]
            )
        )
        request = _request(start, end, limit=6, explore_weight=0)
        result = asyncio.run(run_recommendation(request, deps, config, now))
        assert result.diagnostics.bandit.enabled
        assert result.profile.tuning["explore_weight"] == 0.0
        assert result.diagnostics.bandit.arms["driving:cafe"].sufficient
        for c in result.items:
            assert c.final_score == pytest.approx(c.tuned_base_score - c.diversity_penalty, abs=2e-6)

    def test_interest_profile_lifts_matching_poi(self, deps, interest_store, start, end, config, now):
        def museum(user_id):
            request = _request(start, end, limit=10, user_id=user_id, interest_weight=0.8)
            result = asyncio.run(run_recommendation(request, deps, config, now))
            return next(c for c in result.items if c.id == 6)

        interest_store.set_rows(
            "art-fan",
            [
                {"feature_type": "category", "feature_key": "museum", "score": 5.0},
                {"feature_type": "tag", "feature_key": "art", "score": 4.0},
                {"feature_type": "poi", "feature_key": "6", "score": 3.0},
            ],
        )
        with_profile = museum("art-fan")
        without_profile = museum(None)
        assert with_profile.interest_fit > without_profile.interest_fit
        assert with_profile.final_score > without_profile.final_score
        assert with_profile.rank_position <= without_profile.rank_position
        assert with_profile.rank_position == 1


class TestAppState:
    @pytest.fixture
    def state(self, tmp_path, routing, poi_store, quality_store, interest_store, event_store):
        service_config = ServiceConfig(data_dir=tmp_path, rollout_ratio=1.0)
        return AppState(
            service_config,
            routing=routing,
            poi_store=poi_store,
            quality_store=quality_store,
            interest_store=interest_store,
            event_store=event_store,
        )

    def test_recommend_uses_stored_settings(self, state, start, end, now):
        state.save_settings("u1", interest_weight=80)
        result = asyncio.run(state.recommend(_request(start, end, user_id="u1"), now=now))
        assert result.bucket == "treatment"
        assert result.profile.tuning["interest_weight"] == pytest.approx(0.8)

    def test_request_weights_win(self, state, start, end, now):
        state.save_settings("u1", interest_weight=80)
        request = _request(start, end, user_id="u1", interest_weight=0.2)
        result = asyncio.run(state.recommend(request, now=now))
        assert result.profile.tuning["interest_weight"] == pytest.approx(0.2)

    def test_record_events(self, state, now):
        payloads = [
            {"eventType": "save", "poiId": "3", "requestId": "r1", "userId": "u1"},
            {"eventType": "save", "poiId": "3", "requestId": "r1", "userId": "u1"},
            {"event_type": "bogus", "poi_id": 1},
            {"event_type": "save", "poi_id": 0},
        ]
        result = asyncio.run(state.record_events(payloads, now=now))
        assert result.accepted == 1
        assert result.dropped == 2
        assert result.duplicates == 1
        assert len(state.event_store) == 1

    def test_settings_and_assignments_are_persisted(self, state, tmp_path):
        state.save_settings("u1", explore_weight=0.3)
        state.assign_bucket(user_id="u1")
        assert (tmp_path / "settings.json").exists()
        assert (tmp_path / "ab_assignments.json").exists()

    def test_custom_poi_store_backs_default_event_store(self, tmp_path, routing, poi_rows, quality_store, start, end, now):
        state = AppState(
            ServiceConfig(data_dir=tmp_path, rollout_ratio=1.0),
            routing=routing,
            poi_store=CatalogPoiStore(poi_rows),
            quality_store=quality_store,
        )
        result = asyncio.run(state.recommend(_request(start, end, user_id="u1", limit=3), now=now))
        assert result.status == "ok"

        payloads = [{"event_type": "save", "poi_id": 6, "request_id": "r1", "user_id": "u1"}]
        asyncio.run(state.record_events(payloads, now=now))
        history = asyncio.run(
            state.event_store.arm_history("driving", ["museum"], now - timedelta(days=90), {"save": 1.0})
        )
        assert history["museum"].total_events == 1
        assert history["museum"].reward_sum == pytest.approx(1.0)
