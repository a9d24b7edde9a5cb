"""
Typed rows read from the offline feature stores.

Optional fields stay None when the store has no value, so callers decide the
fallback explicitly instead of coalescing nulls to zero.
"""

from typing import Literal, Optional

from pydantic import BaseModel

FeatureType = Literal["tag", "category", "poi"]


class PoiQualityStats(BaseModel):
    """Per (poi, mode) quality/novelty aggregates."""

    poi_id: int
    mode: str = "driving"
    impressions: Optional[int] = None
    interactions: Optional[int] = None
    add_via_count: Optional[int] = None
    save_count: Optional[int] = None
    quality_score: Optional[float] = None
    novelty_score: Optional[float] = None


class InterestAggRow(BaseModel):
    """One decayed user interest aggregate."""

    feature_type: FeatureType
    feature_key: str
    score: float


class ArmHistory(BaseModel):
    """Reward-weighted event sums for one (mode, category group) arm."""

    category_group: str
    impressions: int = 0
    reward_sum: float = 0.0
    total_events: int = 0
