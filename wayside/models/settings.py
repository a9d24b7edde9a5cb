"""Per-user recommendation settings and A/B bucket assignments."""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

Bucket = Literal["treatment", "control"]


class UserRecommendationSettings(BaseModel):
    """Stored tuning for one user; distance_weight is always 1 - interest_weight."""

    user_id: Optional[str] = None
    exists: bool = False
    interest_weight: float = 0.5
    distance_weight: float = 0.5
    explore_weight: float = 0.15
    mode_defaults: Optional[Dict[str, Any]] = None
    updated_at: Optional[datetime] = None


class BucketAssignment(BaseModel):
    """Outcome of assign_bucket; from_cache marks a previously persisted assignment."""

    subject_key: str
    experiment_key: str
    bucket: Bucket
    treatment_ratio: float
    assigned_at: Optional[datetime] = None
    from_cache: bool = False
