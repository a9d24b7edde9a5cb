"""
Travel-mode configuration: per-mode sampling and detour parameters.

get_mode_config merges the mode's defaults with an optional user override
(stored settings ``mode_defaults[mode]``). Override values are clamped into a
safe range; missing, zero or non-numeric values keep the default.
"""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from ..utils.scores import clamp, safe_float

SUPPORTED_MODES = ("driving", "walking", "cycling")
DEFAULT_MODE = "driving"


class ModeConfig(BaseModel):
    """Sampling/detour parameters for one request. Built per request, never persisted."""

    model_config = ConfigDict(frozen=True)

    mode: str
    routing_profile: str
    sample_step_m: float
    corridor_radius_m: float
    max_detour_minutes: float
    max_detour_ratio: float
    speed_mps: float


MODE_DEFAULTS: Dict[str, ModeConfig] = {
    "driving": ModeConfig(
        mode="driving",
        routing_profile="driving",
        sample_step_m=300,
        corridor_radius_m=500,
        max_detour_minutes=15,
        max_detour_ratio=0.35,
        speed_mps=13.89,
    ),
    "walking": ModeConfig(
        mode="walking",
        routing_profile="walking",
        sample_step_m=120,
        corridor_radius_m=220,
        max_detour_minutes=10,
        max_detour_ratio=0.4,
        speed_mps=1.4,
    ),
    "cycling": ModeConfig(
        mode="cycling",
        routing_profile="cycling",
        sample_step_m=180,
        corridor_radius_m=320,
        max_detour_minutes=12,
        max_detour_ratio=0.35,
        speed_mps=4.2,
    ),
}

# field -> (accepted override keys, low, high)
_OVERRIDE_RANGES = {
    "sample_step_m": (("sample_step_m", "sampleStepM"), 60.0, 1000.0),
    "corridor_radius_m": (("corridor_radius_m", "corridorRadiusM"), 120.0, 2000.0),
    "max_detour_minutes": (("max_detour_minutes", "maxDetourMinutes"), 5.0, 40.0),
    "max_detour_ratio": (("max_detour_ratio", "maxDetourRatio"), 0.15, 0.65),
    "speed_mps": (("speed_mps", "speedMps"), 0.8, 30.0),
}


def normalize_mode(value: Any) -> str:
    """Lowercase/trim a mode string; anything unsupported becomes driving."""
    mode = str(value or DEFAULT_MODE).strip().lower()
    return mode if mode in SUPPORTED_MODES else DEFAULT_MODE


def _override_value(overrides: Mapping[str, Any], keys) -> float:
    for key in keys:
        if key in overrides:
            return safe_float(overrides.get(key), 0.0)
    return 0.0


def get_mode_config(
    mode: Any,
    mode_defaults: Optional[Mapping[str, Any]] = None,
) -> ModeConfig:
    """
    Build the ModeConfig for a request.

    Args:
        mode: Requested travel mode (unknown -> driving).
        mode_defaults: Optional mapping of mode -> override dict, as stored in
            user settings. Keys may be snake_case or camelCase.
    """
    safe_mode = normalize_mode(mode)
    base = MODE_DEFAULTS[safe_mode]
    overrides = mode_defaults.get(safe_mode) if isinstance(mode_defaults, Mapping) else None
    if not isinstance(overrides, Mapping):
        return base

    update = {}
    for field, (keys, low, high) in _OVERRIDE_RANGES.items():
        # Zero or invalid keeps the mode default, then the result is clamped.
        raw = _override_value(overrides, keys) or getattr(base, field)
        update[field] = clamp(raw, low, high)
    return base.model_copy(update=update)
