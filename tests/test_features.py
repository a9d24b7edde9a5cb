"""Feature enrichment: fit scores, detour estimate and post-filters."""

import asyncio
import math
from datetime import timedelta

import pytest

from wayside.models.event import RecommendationEvent
from wayside.models.mode import get_mode_config
from wayside.models.poi import Candidate, DetourEstimate, PoiRecord
from wayside.models.route import SamplePoint
from wayside.models.stats import PoiQualityStats
from wayside.stages.features import (
    apply_post_filters,
    build_reason,
    derive_novelty_fit,
    derive_quality_fit,
    enrich_candidates,
    estimate_detour,
    route_segment,
)
from wayside.stages.recall import recall_candidates

SAMPLES = [SamplePoint(lat=51.5, lng=-0.13 + 0.004 * i, route_index=i) for i in range(5)]


def _candidate(lat=51.5, lng=-0.122, best=0.0, idx=2, popularity=0.0):
    poi = PoiRecord(id=1, name="x", lat=lat, lng=lng, popularity=popularity)
    return Candidate(poi=poi, best_distance_m=best, nearest_sample_index=idx)


class TestDetour:
    def test_on_route_has_no_detour(self, config):
        detour = estimate_detour(_candidate(), SAMPLES, get_mode_config("walking"), 1200.0, config)
        assert detour.extra_distance_m == pytest.approx(0.0, abs=1e-6)
        assert detour.fit == pytest.approx(1.0)

    def test_small_triangle_uses_distance_fallback(self, config):
        # 100 m north of the middle sample: the triangle excess is far below 0.4 * 1.9 * 100.
        candidate = _candidate(lat=51.5009, best=100.0)
        detour = estimate_detour(candidate, SAMPLES, get_mode_config("walking"), 1200.0, config)
        assert detour.extra_distance_m == pytest.approx(190.0)
        assert detour.extra_duration_s == pytest.approx(190.0 / 1.4)

    def test_cap_is_min_of_absolute_and_ratio(self, config):
        walking = get_mode_config("walking")
        short = estimate_detour(_candidate(), SAMPLES, walking, 1000.0, config)
        assert short.cap_s == pytest.approx(400.0)  # 1000 s * 0.4
        long = estimate_detour(_candidate(), SAMPLES, walking, 10_000.0, config)
        assert long.cap_s == pytest.approx(600.0)  # 10 minutes
        unknown = estimate_detour(_candidate(), SAMPLES, walking, None, config)
        assert unknown.cap_s == pytest.approx(600.0)

    def test_ratio_cap_floor(self, config):
        detour = estimate_detour(_candidate(), SAMPLES, get_mode_config("driving"), 100.0, config)
        assert detour.cap_s == pytest.approx(120.0)

    def test_no_samples(self, config):
        detour = estimate_detour(_candidate(), [], get_mode_config("driving"), 600.0, config)
        assert detour.fit == 0.5
        assert detour.cap_s is None
        assert not detour.exceeds_cap()


class TestFitHelpers:
    def test_quality_from_stored_score(self, config):
        stats = PoiQualityStats(poi_id=1, mode="driving", quality_score=0.82)
        assert derive_quality_fit(_candidate(), stats, config) == pytest.approx(0.82)

    def test_quality_smoothed_rate(self, config):
        stats = PoiQualityStats(poi_id=1, mode="driving", impressions=100, interactions=10)
        expected = (10 + 0.12 * 30) / (100 + 30)
        assert derive_quality_fit(_candidate(), stats, config) == pytest.approx(expected)

    def test_quality_ignores_interactions_without_impressions(self, config):
        stats = PoiQualityStats(poi_id=1, mode="driving", impressions=0, interactions=5)
        assert derive_quality_fit(_candidate(), stats, config) == pytest.approx(0.12)

    def test_quality_from_popularity(self, config):
        assert derive_quality_fit(_candidate(popularity=4.0), None, config) == pytest.approx(0.8)

    def test_novelty_for_unseen_poi(self, config):
        assert derive_novelty_fit(None, 0, config) == pytest.approx(1.0)

    def test_novelty_drops_with_exposure(self, config):
        stats = PoiQualityStats(poi_id=1, mode="driving", impressions=50)
        fresh = derive_novelty_fit(stats, 0, config)
        seen = derive_novelty_fit(stats, 8, config)
        expected_global = 1 / (1 + math.log(51))
        assert fresh == pytest.approx(0.55 * expected_global + 0.45)
        assert seen == pytest.approx(0.55 * expected_global + 0.45 * math.exp(-2))

    @pytest.mark.parametrize(
        "args,expected",
        [
            (("coffee", 0.1, 0.9, 0.1, 0.1, 0.1), "Matches your interests: coffee"),
            ((None, 0.1, 0.9, 0.1, 0.1, 0.1), "Good fit for your route"),
            ((None, 0.75, 0.1, 0.9, 0.1, 0.1), "Right along your route"),
            ((None, 0.1, 0.1, 0.7, 0.9, 0.1), "Highly rated by travelers"),
            ((None, 0.1, 0.1, 0.1, 0.7, 0.9), "Fresh place with lower exposure"),
            ((None, 0.1, 0.1, 0.1, 0.1, 0.6), "Low detour impact"),
        ],
    )
    def test_reason(self, args, expected):
        assert build_reason(*args) == expected

    def test_route_segment_thirds(self):
        assert [route_segment(p) for p in (0.0, 0.33, 0.34, 0.66, 0.67, 1.0)] == [0, 0, 1, 1, 2, 2]


class TestPostFilters:
    def test_detour_equal_to_cap_is_kept(self, make_scored, config):
        at_cap = make_scored(1, detour=DetourEstimate(extra_duration_s=120.0, cap_s=120.0, fit=0.0))
        over = make_scored(2, lng=-0.09, detour=DetourEstimate(extra_duration_s=121.0, cap_s=120.0, fit=0.0))
        kept, drops = apply_post_filters([at_cap, over], 500.0, config)
        assert [c.id for c in kept] == [1]
        assert drops.detour == 1

    def test_duplicates_by_name_and_position(self, make_scored, config):
        first = make_scored(1, name="Bean There")
        twin = make_scored(2, name="bean there")
        elsewhere = make_scored(3, name="Bean There", lng=-0.08)
        kept, drops = apply_post_filters([first, twin, elsewhere], 500.0, config)
        assert [c.id for c in kept] == [1, 3]
        assert drops.duplicate == 1

    def test_dropped_row_does_not_claim_its_key(self, make_scored, config):
        over = make_scored(1, name="Twin", detour=DetourEstimate(extra_duration_s=500.0, cap_s=120.0, fit=0.0))
        twin = make_scored(2, name="Twin")
        kept, drops = apply_post_filters([over, twin], 500.0, config)
        assert [c.id for c in kept] == [2]
        assert drops.detour == 1
        assert drops.duplicate == 0

    def test_out_of_scope(self, make_scored, config):
        near = make_scored(1, best_distance_m=1250.0)
        far = make_scored(2, lng=-0.09, best_distance_m=1251.0)
        kept, drops = apply_post_filters([near, far], 500.0, config)
        assert [c.id for c in kept] == [1]
        assert drops.out_of_scope == 1

    def test_coverage_penalizes_crowded_segments(self, make_scored, config):
        rows = [make_scored(i, lng=-0.1 + 0.001 * i, segment=0) for i in range(1, 4)]
        rows.append(make_scored(9, lng=-0.08, segment=2))
        kept, _ = apply_post_filters(rows, 500.0, config)
        coverage = {c.id: c.coverage_fit for c in kept}
        assert coverage[1] == pytest.approx(1 - 2 / 3)
        assert coverage[9] == pytest.approx(1.0)


class TestEnrichCandidates:
    def _enrich(self, london_route, start, end, poi_store, quality_store, event_store, config, now, user_id=None):
        mode = get_mode_config("driving")

        async def run():
            recall = await recall_candidates(
                london_route, start, end, mode, None, poi_store, quality_store, config
            )
            return await enrich_candidates(
                recall.candidates,
                recall.samples,
                london_route,
                mode,
                None,
                user_id,
                recall.radius_m,
                quality_store,
                event_store,
                config,
                now,
            )

        return asyncio.run(run())

    def test_fits_in_unit_interval(self, london_route, start, end, poi_store, quality_store, event_store, config, now):
        result = self._enrich(london_route, start, end, poi_store, quality_store, event_store, config, now)
        assert result.candidates
        for c in result.candidates:
            for value in (
                c.distance_fit,
                c.interest_fit,
                c.quality_fit,
                c.novelty_fit,
                c.detour_fit,
                c.context_fit,
                c.coverage_fit,
            ):
                assert 0.0 <= value <= 1.0
            assert c.route_segment in (0, 1, 2)
            assert c.reason

    def test_personal_exposure_lowers_novelty(
        self, london_route, start, end, poi_store, quality_store, event_store, config, now
    ):
        events = [
            RecommendationEvent(user_id="u1", poi_id=1, event_type="impression", ts=now - timedelta(days=1))
            for _ in range(6)
        ]
        asyncio.run(event_store.insert_events(events))
        result = self._enrich(
            london_route, start, end, poi_store, quality_store, event_store, config, now, user_id="u1"
        )
        novelty = {c.id: c.novelty_fit for c in result.candidates}
        assert novelty[1] < novelty[2]

    def test_empty_input(self, london_route, quality_store, event_store, config, now):
        result = asyncio.run(
            enrich_candidates(
                [], [], london_route, get_mode_config("driving"), None, None, 500.0,
                quality_store, event_store, config, now,
            )
        )
        assert result.candidates == []
        assert result.drop_counts.duplicate == 0
