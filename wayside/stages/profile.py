"""
User preference profile: aggregated interests, with a live fallback.

The profile is read from the interest aggregate store. When the user has no
positive aggregate, it is computed live from the user's recent events joined
to POI category and tags, each event weighted by its reward and decayed by age.

compute_interest_fit scores one POI against the profile.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from ..models.config import RecommendationConfig
from ..models.poi import PoiRecord
from ..models.profile import UserProfile
from ..models.stats import InterestAggRow
from ..services.event_store import EventStore
from ..services.feature_store import InterestStore
from ..services.poi_store import PoiStore
from ..utils.scores import clamp, days_between

logger = logging.getLogger(__name__)


@dataclass
class InterestMatch:
    """interest_fit for one POI plus the profile keys that produced it."""

    score: float
    tag_score: float = 0.0
    category_score: float = 0.0
    poi_score: float = 0.0
    top_tag: Optional[str] = None
    match_tags: List[str] = field(default_factory=list)


def _top_keys(weights: Dict, limit: int) -> List:
    ranked = sorted(
        ((k, w) for k, w in weights.items() if w > 0),
        key=lambda kw: (-kw[1], str(kw[0])),
    )
    return [k for k, _ in ranked[:limit]]


def _build_profile(
    tag_weights: Dict[str, float],
    category_weights: Dict[str, float],
    poi_weights: Dict[int, float],
    source: str,
    config: RecommendationConfig,
) -> UserProfile:
    return UserProfile(
        tag_weights=tag_weights,
        category_weights=category_weights,
        poi_weights=poi_weights,
        top_tags=_top_keys(tag_weights, config.profile_top_keys),
        top_categories=_top_keys(category_weights, config.profile_top_keys),
        source=source,
    )


def profile_from_aggregates(
    rows: Iterable[InterestAggRow],
    config: RecommendationConfig,
) -> UserProfile:
    """Build an aggregated profile. Rows arrive highest score first; the first row per key wins."""
    tags: Dict[str, float] = {}
    categories: Dict[str, float] = {}
    pois: Dict[int, float] = {}
    for row in rows:
        key = str(row.feature_key).strip()
        if not key:
            continue
        if row.feature_type == "tag":
            tags.setdefault(key.lower(), row.score)
        elif row.feature_type == "category":
            categories.setdefault(key.lower(), row.score)
        elif row.feature_type == "poi":
            try:
                pois.setdefault(int(key), row.score)
            except ValueError:
                logger.warning("[profile] BAD_POI_KEY key=%s", key)
    return _build_profile(tags, categories, pois, "aggregated", config)


def _add(weights: Dict, key, value: float) -> None:
    weights[key] = weights.get(key, 0.0) + value


async def live_profile(
    user_id: str,
    event_store: EventStore,
    poi_store: PoiStore,
    config: RecommendationConfig,
    now: datetime,
) -> UserProfile:
    """Profile computed from the user's own events: reward * value * exp(-age_days / decay)."""
    since = now - timedelta(days=config.profile_fallback_days)
    events = await event_store.user_events(user_id, since)
    if not events:
        return UserProfile.empty("fallback")

    pois = await poi_store.get_pois(sorted({e.poi_id for e in events}))
    tags: Dict[str, float] = {}
    categories: Dict[str, float] = {}
    poi_weights: Dict[int, float] = {}
    for event in events:
        reward = config.event_reward_weights.get(event.event_type, 0.0)
        if not reward:
            continue
        decay = math.exp(-days_between(event.ts, now) / config.profile_decay_days)
        weight = reward * event.event_value * decay
        _add(poi_weights, event.poi_id, weight)
        poi = pois.get(event.poi_id)
        if poi is None:
            continue
        category = (poi.category or "").strip().lower()
        if category:
            _add(categories, category, weight)
        for tag in {t.lower() for t in poi.tags}:
            _add(tags, tag, weight)

    def positive(weights: Dict) -> Dict:
        return {k: round(w, 6) for k, w in weights.items() if w > 0}

    return _build_profile(positive(tags), positive(categories), positive(poi_weights), "fallback", config)


async def fetch_user_profile(
    user_id: Optional[str],
    interest_store: InterestStore,
    event_store: EventStore,
    poi_store: PoiStore,
    config: RecommendationConfig,
    now: datetime,
) -> UserProfile:
    """Aggregated profile when it has any positive weight, else the live fallback."""
    if not user_id:
        return UserProfile.empty("none")
    rows = await interest_store.get_user_interest_agg(user_id)
    profile = profile_from_aggregates(rows, config)
    if profile.has_profile:
        return profile
    logger.info("[profile] AGG_EMPTY_USING_FALLBACK user=%s rows=%s", user_id, len(rows))
    return await live_profile(user_id, event_store, poi_store, config, now)


def compute_interest_fit(
    poi: PoiRecord,
    profile: Optional[UserProfile],
    config: RecommendationConfig,
) -> InterestMatch:
    """
    Blend per-tag, per-category and per-POI weights, each normalized by its
    map's maximum. Without a profile, fall back to a popularity-biased constant.
    """
    profile = profile or UserProfile.empty()
    popularity = clamp(poi.popularity / 5, 0.0, 1.0)
    if not profile.has_profile:
        return InterestMatch(score=clamp(popularity * 0.5 + 0.25, 0.0, 1.0))

    max_tag = profile.max_tag_weight
    max_category = profile.max_category_weight
    max_poi = profile.max_poi_weight

    unique_tags = list(dict.fromkeys(t.lower() for t in poi.tags))
    tag_sum = sum(profile.tag_weights.get(t, 0.0) for t in unique_tags)
    tag_score = tag_sum / max_tag if max_tag else 0.0

    category_key = (poi.category or "").strip().lower()
    category_weight = profile.category_weights.get(category_key, 0.0) if category_key else 0.0
    category_score = category_weight / max_category if max_category else 0.0

    poi_weight = profile.poi_weights.get(poi.id, 0.0)
    poi_score = poi_weight / max_poi if max_poi else 0.0

    score = clamp(
        tag_score * config.interest_weight_tag
        + category_score * config.interest_weight_category
        + poi_score * config.interest_weight_poi,
        0.0,
        1.0,
    )

    top_tag = None
    top_weight = 0.0
    for tag in unique_tags:
        weight = profile.tag_weights.get(tag, 0.0)
        if weight > top_weight:
            top_tag, top_weight = tag, weight
    if top_tag is None and category_weight > 0:
        top_tag = category_key

    match_tags = [t for t in unique_tags if profile.tag_weights.get(t, 0.0) > 0]
    if category_key and category_weight > 0 and category_key not in match_tags:
        match_tags.append(category_key)

    return InterestMatch(
        score=score,
        tag_score=tag_score,
        category_score=category_score,
        poi_score=poi_score,
        top_tag=top_tag,
        match_tags=match_tags,
    )
