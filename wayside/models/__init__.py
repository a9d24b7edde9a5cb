"""Data models for the recommendation pipeline."""

from .config import DEFAULT_CONFIG, RecommendationConfig, resolve_config
from .event import EVENT_TYPES, EventIngestResult, RecommendationEvent, normalize_event_payload
from .mode import MODE_DEFAULTS, SUPPORTED_MODES, ModeConfig, get_mode_config, normalize_mode
from .poi import (
    RECALL_SOURCES,
    Candidate,
    DetourEstimate,
    Explanation,
    PoiRecord,
    ScoredCandidate,
    normalize_category,
    parse_tag_list,
)
from .profile import UserProfile
from .result import (
    BanditDiagnostics,
    Diagnostics,
    DiversityDiagnostics,
    FilterDropCounts,
    RecallCounts,
    RecommendationRequest,
    RecommendationResult,
)
from .route import RouteOutcome, RoutePoint, RouteResult, SamplePoint
from .settings import BucketAssignment, UserRecommendationSettings
from .stats import ArmHistory, InterestAggRow, PoiQualityStats

__all__ = [
    "ArmHistory",
    "BanditDiagnostics",
    "BucketAssignment",
    "Candidate",
    "DEFAULT_CONFIG",
    "DetourEstimate",
    "Diagnostics",
    "DiversityDiagnostics",
    "EVENT_TYPES",
    "EventIngestResult",
    "Explanation",
    "FilterDropCounts",
    "InterestAggRow",
    "MODE_DEFAULTS",
    "ModeConfig",
    "PoiQualityStats",
    "PoiRecord",
    "RECALL_SOURCES",
    "RecallCounts",
    "RecommendationConfig",
    "RecommendationEvent",
    "RecommendationRequest",
    "RecommendationResult",
    "RouteOutcome",
    "RoutePoint",
    "RouteResult",
    "SUPPORTED_MODES",
    "SamplePoint",
    "ScoredCandidate",
    "UserProfile",
    "UserRecommendationSettings",
    "get_mode_config",
    "normalize_category",
    "normalize_event_payload",
    "normalize_mode",
    "parse_tag_list",
    "resolve_config",
]
