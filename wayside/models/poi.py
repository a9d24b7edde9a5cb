"""
POI models: lookup rows, recalled candidates and scored candidates.

Contains:
- PoiRecord: one row of the geospatial POI lookup contract
- Candidate: a POI merged across recall sources (immutable once recall completes)
- ScoredCandidate: a candidate with its fit scores; every later stage returns
  a copy carrying forward prior fields
"""

import re
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.scores import safe_float

RECALL_SOURCES = ("corridor", "endpoint", "preference", "novelty")

_TAG_SPLIT = re.compile(r"[,;|/]+")


def parse_tag_list(value: Any) -> List[str]:
    """Tags arrive as a list or a delimited string ("museum, art|history")."""
    if not value:
        return []
    if isinstance(value, (list, tuple, set)):
        raw = [str(v) for v in value]
    else:
        raw = _TAG_SPLIT.split(str(value))
    return [tag.strip() for tag in raw if tag and tag.strip()]


def normalize_category(value: Any) -> str:
    """Lowercased category group; empty becomes "unknown"."""
    normalized = str(value or "unknown").strip().lower()
    return normalized or "unknown"


class PoiRecord(BaseModel):
    """Geospatial lookup row. Optional fields are explicit; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str = ""
    category: Optional[str] = None
    lat: float
    lng: float
    popularity: float = 0.0
    price: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    # Distance from the lookup point, when the store reports it.
    distance_m: Optional[float] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> List[str]:
        return parse_tag_list(value)

    @field_validator("popularity", mode="before")
    @classmethod
    def _popularity(cls, value: Any) -> float:
        return safe_float(value, 0.0)

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, value: Any) -> str:
        return "" if value is None else str(value)


class Candidate(BaseModel):
    """A POI recalled for this request. Identity = POI id."""

    poi: PoiRecord
    hits: int = 1
    best_distance_m: Optional[float] = None
    nearest_sample_index: Optional[int] = None
    sources: List[str] = Field(default_factory=list)
    distance_to_start_m: float = 0.0
    distance_to_end_m: float = 0.0

    @property
    def id(self) -> int:
        return self.poi.id


class DetourEstimate(BaseModel):
    """Extra distance/time to visit the POI and rejoin the route."""

    extra_distance_m: Optional[float] = None
    extra_duration_s: Optional[float] = None
    cap_s: Optional[float] = None
    fit: float = Field(default=0.5, ge=0, le=1)

    def exceeds_cap(self) -> bool:
        """True only when strictly above the cap; equality is kept."""
        if self.extra_duration_s is None or self.cap_s is None:
            return False
        return self.extra_duration_s > self.cap_s


class Explanation(BaseModel):
    """One factor's share of the positive score total, in percent."""

    tag: str
    contribution: float


class ScoredCandidate(BaseModel):
    """A candidate with all its scoring components."""

    candidate: Candidate

    distance_fit: float = Field(ge=0, le=1)
    interest_fit: float = Field(ge=0, le=1)
    quality_fit: float = Field(ge=0, le=1)
    novelty_fit: float = Field(ge=0, le=1)
    detour_fit: float = Field(ge=0, le=1)
    context_fit: float = Field(ge=0, le=1)
    coverage_fit: float = Field(default=1.0, ge=0, le=1)

    route_segment: int = Field(ge=0, le=2)
    route_progress: float = 0.0
    detour: DetourEstimate = Field(default_factory=DetourEstimate)
    top_tag: Optional[str] = None
    match_tags: List[str] = Field(default_factory=list)
    reason: str = ""

    # Base scoring
    base_score: float = 0.0
    tuned_base_score: float = 0.0

    # Bandit
    arm_key: Optional[str] = None
    rank_norm: Optional[float] = None
    bandit_raw: float = 0.0
    bandit_norm: float = 0.0
    bandit_bonus: float = 0.0
    pre_diversity_score: float = 0.0

    # Diversity and finalize
    diversity_penalty: float = 0.0
    final_score: float = 0.0
    rank_position: Optional[int] = None
    explanations: List[Explanation] = Field(default_factory=list)

    @property
    def poi(self) -> PoiRecord:
        return self.candidate.poi

    @property
    def id(self) -> int:
        return self.candidate.poi.id

    @property
    def category_group(self) -> str:
        return normalize_category(self.candidate.poi.category)

    @property
    def best_distance_m(self) -> Optional[float]:
        return self.candidate.best_distance_m
