"""
Recommendation event model and payload normalization.

normalize_event_payload turns one raw payload (snake_case or camelCase keys)
into a RecommendationEvent, or None when the event must be dropped: unknown
event type or a missing/non-positive poi id.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from ..utils.scores import round_to, safe_float
from .mode import normalize_mode

EVENT_TYPES = (
    "impression",
    "detail_view",
    "open_posts",
    "save",
    "add_via",
    "navigate",
    "dismiss",
    "remove_via",
    "like_post",
    "favorite_post",
)

_MAX_LEN = {
    "session_id": 128,
    "request_id": 128,
    "algorithm_version": 32,
    "bucket": 32,
    "route_hash": 128,
}


class RecommendationEvent(BaseModel):
    """One persisted interaction with a recommended POI."""

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    request_id: str = ""
    algorithm_version: str = "v2"
    bucket: Optional[str] = None
    mode: str = "driving"
    route_hash: Optional[str] = None
    poi_id: int
    rank_position: Optional[int] = None
    event_type: str
    event_value: float = 1.0
    ts: datetime

    def dedupe_key(self) -> Optional[tuple]:
        """(request_id, poi_id, event_type) when a request id is present."""
        if not self.request_id:
            return None
        return (self.request_id, self.poi_id, self.event_type)


class EventIngestResult(BaseModel):
    """Per-call ingestion counts returned to the caller."""

    accepted: int = 0
    dropped: int = 0
    duplicates: int = 0


def _pick(event: Mapping[str, Any], snake: str, camel: str) -> Any:
    value = event.get(snake)
    return event.get(camel) if value is None else value


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        num = safe_float(value, float("nan"))
        return int(num) if num == num else None


def _truncate(value: Any, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)[: _MAX_LEN[field]]


def parse_timestamp(value: Any, now: Optional[datetime] = None) -> datetime:
    """Datetime, ISO string or epoch seconds; anything unparseable becomes now (UTC)."""
    fallback = now or datetime.now(timezone.utc)
    if value is None or value == "":
        return fallback
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return fallback
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_event_payload(
    event: Mapping[str, Any],
    default_version: str = "v2",
    now: Optional[datetime] = None,
) -> Optional[RecommendationEvent]:
    """Normalize one payload; None means the event is dropped."""
    if not isinstance(event, Mapping):
        return None

    event_type = str(_pick(event, "event_type", "eventType") or "").strip()
    if event_type not in EVENT_TYPES:
        return None

    poi_id = _to_int(_pick(event, "poi_id", "poiId"))
    if not poi_id or poi_id <= 0:
        return None

    raw_user = _pick(event, "user_id", "userId")
    user_id = str(raw_user).strip() if raw_user not in (None, "") else None
    raw_value = _pick(event, "event_value", "eventValue")
    event_value = safe_float(raw_value, float("nan"))

    return RecommendationEvent(
        user_id=user_id or None,
        session_id=_truncate(_pick(event, "session_id", "sessionId"), "session_id"),
        request_id=_truncate(_pick(event, "request_id", "requestId"), "request_id") or "",
        algorithm_version=_truncate(
            _pick(event, "algorithm_version", "algorithmVersion"), "algorithm_version"
        )
        or default_version,
        bucket=_truncate(event.get("bucket"), "bucket"),
        mode=normalize_mode(event.get("mode")),
        route_hash=_truncate(_pick(event, "route_hash", "routeHash"), "route_hash"),
        poi_id=poi_id,
        rank_position=_to_int(_pick(event, "rank_position", "rankPosition")),
        event_type=event_type,
        event_value=round_to(event_value, 6) if event_value == event_value else 1.0,
        ts=parse_timestamp(event.get("ts"), now),
    )
