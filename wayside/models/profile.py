"""
User preference profile: tag/category/POI weight maps and their provenance.
"""

from typing import Dict, List, Literal

from pydantic import BaseModel, Field

ProfileSource = Literal["aggregated", "fallback", "none"]


def _map_max(weights: Dict) -> float:
    return max([0.0, *weights.values()])


class UserProfile(BaseModel):
    """
    Weight maps rebuilt fresh per request.

    Tag and category keys are lowercased. Each map is normalized against its
    own maximum at scoring time (see stages.profile.compute_interest_fit).
    """

    tag_weights: Dict[str, float] = Field(default_factory=dict)
    category_weights: Dict[str, float] = Field(default_factory=dict)
    poi_weights: Dict[int, float] = Field(default_factory=dict)
    top_tags: List[str] = Field(default_factory=list)
    top_categories: List[str] = Field(default_factory=list)
    source: ProfileSource = "none"

    @property
    def max_tag_weight(self) -> float:
        return _map_max(self.tag_weights)

    @property
    def max_category_weight(self) -> float:
        return _map_max(self.category_weights)

    @property
    def max_poi_weight(self) -> float:
        return _map_max(self.poi_weights)

    @property
    def has_profile(self) -> bool:
        """True when any map carries a positive weight."""
        return self.max_tag_weight > 0 or self.max_category_weight > 0 or self.max_poi_weight > 0

    @classmethod
    def empty(cls, source: ProfileSource = "none") -> "UserProfile":
        return cls(source=source)
