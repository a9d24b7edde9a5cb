"""
Settings store: per-user recommendation tuning (interest/explore weights and
optional per-mode overrides). Persistence to memory or a JSON file.

load_settings/save_settings apply weight normalization so every caller sees
the same values regardless of backend.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from ..errors import SettingsError
from ..models.config import RecommendationConfig, resolve_config
from ..models.settings import UserRecommendationSettings
from ..utils.scores import normalize_weight, round_to


class SettingsStore(Protocol):
    """Protocol for settings persistence. Rows are plain dicts."""

    def get(self, user_id: str) -> Optional[Dict]:
        """Return the stored row for the user, or None."""
        ...

    def put(self, user_id: str, row: Dict) -> None:
        """Insert or replace the user's row."""
        ...


class InMemorySettingsStore:
    """Settings held in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[str, Dict] = {}

    def get(self, user_id: str) -> Optional[Dict]:
        with self._lock:
            row = self._rows.get(str(user_id))
            return dict(row) if row is not None else None

    def put(self, user_id: str, row: Dict) -> None:
        with self._lock:
            self._rows[str(user_id)] = dict(row)


class JsonSettingsStore(InMemorySettingsStore):
    """Settings store backed by a JSON file (e.g. data/settings.json)."""

    def __init__(self, path: Union[Path, str]):
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if self._path.exists():
            with open(self._path) as f:
                data = json.load(f)
            if isinstance(data, dict):
                self._rows = {str(k): v for k, v in data.items() if isinstance(v, dict)}

    def _save(self) -> None:
        with open(self._path, "w") as f:
            json.dump(self._rows, f, indent=2, default=str)

    def put(self, user_id: str, row: Dict) -> None:
        with self._lock:
            self._rows[str(user_id)] = dict(row)
            self._save()


def _parse_mode_defaults(raw: Any) -> Optional[Dict[str, Any]]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def load_settings(
    store: SettingsStore,
    user_id: Optional[str],
    config: Optional[RecommendationConfig] = None,
) -> UserRecommendationSettings:
    """Settings for the user, or defaults when the user is anonymous or unknown."""
    config = resolve_config(config)
    row = store.get(str(user_id)) if user_id else None
    interest = normalize_weight((row or {}).get("interest_weight"), config.default_interest_weight)
    explore = normalize_weight((row or {}).get("explore_weight"), config.default_explore_weight)
    return UserRecommendationSettings(
        user_id=str(user_id) if user_id else None,
        exists=row is not None,
        interest_weight=interest,
        distance_weight=round_to(1 - interest, 6),
        explore_weight=explore,
        mode_defaults=_parse_mode_defaults((row or {}).get("mode_defaults")),
        updated_at=(row or {}).get("updated_at") or None,
    )


def save_settings(
    store: SettingsStore,
    user_id: Optional[str],
    interest_weight: Any = None,
    explore_weight: Any = None,
    mode_defaults: Any = None,
    config: Optional[RecommendationConfig] = None,
) -> UserRecommendationSettings:
    """Normalize and persist the user's settings; mode_defaults is kept only when it is a mapping."""
    if not user_id:
        raise SettingsError("user_id required")
    config = resolve_config(config)
    store.put(
        str(user_id),
        {
            "interest_weight": normalize_weight(interest_weight, config.default_interest_weight),
            "explore_weight": normalize_weight(explore_weight, config.default_explore_weight),
            "mode_defaults": dict(mode_defaults) if isinstance(mode_defaults, Mapping) else None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    return load_settings(store, user_id, config)
