"""
Request and result models for one orchestration call, plus the diagnostic
counters each stage reports.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .poi import ScoredCandidate
from .route import RoutePoint, RouteResult
from .settings import Bucket


class RecommendationRequest(BaseModel):
    """Input to run_recommendation. Weights/limits are normalized by the orchestrator."""

    start: RoutePoint
    end: RoutePoint
    via: List[RoutePoint] = Field(default_factory=list)
    user_id: Optional[str] = None
    mode: str = "driving"
    interest_weight: Optional[float] = None
    explore_weight: Optional[float] = None
    limit: Optional[int] = None
    candidate_limit: Optional[int] = None
    category: Optional[str] = None
    radius_m: Optional[float] = None
    mode_defaults: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = None
    bucket: Bucket = "treatment"
    debug: bool = False


class RecallCounts(BaseModel):
    """Unique candidates per source, raw rows per source, failed lookups per source."""

    corridor: int = 0
    endpoint: int = 0
    preference: int = 0
    novelty: int = 0
    raw_corridor: int = 0
    raw_endpoint: int = 0
    raw_preference: int = 0
    raw_novelty: int = 0
    failed: Dict[str, int] = Field(default_factory=dict)


class FilterDropCounts(BaseModel):
    duplicate: int = 0
    detour: int = 0
    out_of_scope: int = 0


class ArmSummary(BaseModel):
    impressions: int = 0
    reward_sum: float = 0.0
    sufficient: bool = False


class BanditDiagnostics(BaseModel):
    enabled: bool = False
    reason: Optional[str] = None
    alpha: Optional[float] = None
    explore_weight: Optional[float] = None
    arms: Dict[str, ArmSummary] = Field(default_factory=dict)


class DiversityDiagnostics(BaseModel):
    mmr_lambda: float
    top_pool: int
    category_counts: Dict[str, int] = Field(default_factory=dict)
    segment_counts: Dict[int, int] = Field(default_factory=dict)


class Diagnostics(BaseModel):
    """Counters that separate "nothing nearby" from "upstream failure"."""

    recall_counts: RecallCounts = Field(default_factory=RecallCounts)
    total_candidates: int = 0
    after_feature_filters: int = 0
    stable_pool_size: int = 0
    filter_drop_counts: FilterDropCounts = Field(default_factory=FilterDropCounts)
    latency_ms: Dict[str, float] = Field(default_factory=dict)
    bandit: BanditDiagnostics = Field(default_factory=BanditDiagnostics)
    diversity: Optional[DiversityDiagnostics] = None


class ProfileSummary(BaseModel):
    user_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    personalized: bool = False
    source: str = "none"
    tuning: Dict[str, float] = Field(default_factory=dict)


class DebugInfo(BaseModel):
    sample_step_m: float
    samples: int
    radius_m: float
    candidates: int


class RecommendationResult(BaseModel):
    """Output of one orchestration call. Not persisted here."""

    status: Literal["ok", "no_route"] = "ok"
    request_id: str
    algorithm_version: str = "v2"
    bucket: Bucket = "treatment"
    mode: str
    mode_fallback: bool = False
    warning: Optional[str] = None
    route: Optional[RouteResult] = None
    items: List[ScoredCandidate] = Field(default_factory=list)
    profile: Optional[ProfileSummary] = None
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    debug: Optional[DebugInfo] = None
