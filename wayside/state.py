"""Application state: config, stores and the request-level entry points."""

import logging
from typing import Any, Iterable, Mapping, Optional

from .config import ServiceConfig, get_config
from .models.config import RecommendationConfig
from .models.event import EventIngestResult, normalize_event_payload
from .models.result import RecommendationRequest, RecommendationResult
from .models.settings import BucketAssignment, UserRecommendationSettings
from .services import (
    AssignmentStore,
    EventStore,
    InMemoryInterestStore,
    InMemoryPoiQualityStore,
    InMemoryPoiStore,
    InterestStore,
    JsonAssignmentStore,
    JsonlEventStore,
    JsonSettingsStore,
    OsrmRoutingEngine,
    PoiQualityStore,
    PoiStore,
    RoutingEngine,
    SettingsStore,
    assign_bucket,
    load_settings,
    parse_backends,
    save_settings,
)
from .stages.orchestrator import PipelineDeps, run_recommendation
from .utils.scores import as_utc

logger = logging.getLogger(__name__)


class AppState:
    """
    Global application state.

    Stores default to file-backed implementations under config.data_dir; any
    of them can be passed in (tests use the in-memory ones).
    """

    def __init__(
        self,
        config: ServiceConfig,
        algorithm_config: Optional[RecommendationConfig] = None,
        routing: Optional[RoutingEngine] = None,
        poi_store: Optional[PoiStore] = None,
        quality_store: Optional[PoiQualityStore] = None,
        interest_store: Optional[InterestStore] = None,
        event_store: Optional[EventStore] = None,
        settings_store: Optional[SettingsStore] = None,
        assignment_store: Optional[AssignmentStore] = None,
    ):
        self.config = config
        self.algorithm_config = algorithm_config or config.load_algorithm_config()

        self.routing = routing or OsrmRoutingEngine(
            parse_backends(config.osrm_urls, config.osrm_enable_public_fallback),
            local_timeout_s=config.osrm_local_timeout_s,
            remote_timeout_s=config.osrm_remote_timeout_s,
            cooldown_s=config.osrm_down_cooldown_s,
        )
        self.poi_store = poi_store or self._create_poi_store(config)
        self.quality_store = quality_store or self._create_quality_store(config)
        self.interest_store = interest_store or InMemoryInterestStore()
        self.event_store = event_store or JsonlEventStore(
            config.data_dir / "events.jsonl",
            category_lookup=self.poi_store.category_of,
        )
        self.settings_store = settings_store or JsonSettingsStore(config.data_dir / "settings.json")
        self.assignment_store = assignment_store or JsonAssignmentStore(
            config.data_dir / "ab_assignments.json"
        )
        logger.info(
            "[startup] STATE_READY pois=%s routing=%s events=%s",
            type(self.poi_store).__name__,
            type(self.routing).__name__,
            type(self.event_store).__name__,
        )

    @staticmethod
    def _create_poi_store(config: ServiceConfig) -> InMemoryPoiStore:
        if config.poi_json_path is not None and config.poi_json_path.exists():
            return InMemoryPoiStore.from_json_file(config.poi_json_path)
        logger.warning("[startup] POI_FILE_MISSING path=%s using empty store", config.poi_json_path)
        return InMemoryPoiStore()

    @staticmethod
    def _create_quality_store(config: ServiceConfig) -> InMemoryPoiQualityStore:
        if config.quality_json_path is not None and config.quality_json_path.exists():
            return InMemoryPoiQualityStore.from_json_file(config.quality_json_path)
        return InMemoryPoiQualityStore()

    @property
    def deps(self) -> PipelineDeps:
        return PipelineDeps(
            routing=self.routing,
            poi_store=self.poi_store,
            quality_store=self.quality_store,
            interest_store=self.interest_store,
            event_store=self.event_store,
        )

    def get_settings(self, user_id: Optional[str]) -> UserRecommendationSettings:
        return load_settings(self.settings_store, user_id, self.algorithm_config)

    def save_settings(
        self,
        user_id: Optional[str],
        interest_weight: Any = None,
        explore_weight: Any = None,
        mode_defaults: Any = None,
    ) -> UserRecommendationSettings:
        return save_settings(
            self.settings_store,
            user_id,
            interest_weight=interest_weight,
            explore_weight=explore_weight,
            mode_defaults=mode_defaults,
            config=self.algorithm_config,
        )

    def assign_bucket(
        self,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> BucketAssignment:
        return assign_bucket(
            self.assignment_store,
            user_id=user_id,
            session_id=session_id,
            ip=ip,
            user_agent=user_agent,
            experiment_key=self.config.experiment_key,
            treatment_ratio=self.config.rollout_ratio,
        )

    async def recommend(
        self,
        request: RecommendationRequest,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        now=None,
    ) -> RecommendationResult:
        """
        Fill weights and mode overrides from the user's stored settings (request
        values win), assign the A/B bucket, then run the pipeline.
        """
        settings = self.get_settings(request.user_id)
        assignment = self.assign_bucket(request.user_id, session_id, ip, user_agent)
        resolved = request.model_copy(
            update={
                "interest_weight": (
                    request.interest_weight
                    if request.interest_weight is not None
                    else settings.interest_weight
                ),
                "explore_weight": (
                    request.explore_weight
                    if request.explore_weight is not None
                    else settings.explore_weight
                ),
                "mode_defaults": request.mode_defaults or settings.mode_defaults,
                "bucket": assignment.bucket,
            }
        )
        return await run_recommendation(resolved, self.deps, self.algorithm_config, now)

    async def record_events(self, events: Iterable[Mapping[str, Any]], now=None) -> EventIngestResult:
        """Normalize and store events; unknown types and bad poi ids are dropped and counted."""
        now = as_utc(now)
        normalized = []
        dropped = 0
        for payload in events:
            event = normalize_event_payload(payload, self.algorithm_config.algorithm_version, now)
            if event is None:
                dropped += 1
            else:
                normalized.append(event)
        accepted, duplicates = (0, 0)
        if normalized:
            accepted, duplicates = await self.event_store.insert_events(normalized)
        if dropped or duplicates:
            logger.info("[events] INGESTED accepted=%s dropped=%s duplicates=%s", accepted, dropped, duplicates)
        return EventIngestResult(accepted=accepted, dropped=dropped, duplicates=duplicates)

    async def aclose(self) -> None:
        close = getattr(self.routing, "aclose", None)
        if close is not None:
            await close()


_state: Optional[AppState] = None


def get_state() -> AppState:
    global _state
    if _state is None:
        config = get_config()
        _state = AppState(config)
    return _state
