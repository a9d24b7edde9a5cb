"""
Service Configuration

Loads configuration from environment variables and provides defaults.
A .env file at the project root is loaded with python-dotenv.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .models.config import RecommendationConfig
from .services.experiments import normalize_treatment_ratio

BASE_DIR = Path(__file__).resolve().parent.parent

root_env = BASE_DIR / ".env"
if root_env.exists():
    load_dotenv(root_env)

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Service configuration."""

    # Routing
    osrm_urls: List[str] = field(default_factory=list)
    osrm_enable_public_fallback: bool = True
    osrm_local_timeout_s: float = 0.6
    osrm_remote_timeout_s: float = 12.0
    osrm_down_cooldown_s: float = 15.0

    # A/B rollout share for the treatment bucket
    rollout_ratio: float = 0.5
    experiment_key: str = "reco_v2"

    # Data
    data_dir: Path = BASE_DIR / "data"
    poi_json_path: Optional[Path] = None
    quality_json_path: Optional[Path] = None
    algorithm_config_path: Optional[Path] = None

    # Recall failure policy: strict unless set
    recall_best_effort: bool = False

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Load configuration from environment variables."""

        def _path_env(key: str, default: Optional[Path] = None) -> Optional[Path]:
            v = os.getenv(key)
            if not v:
                return default
            p = Path(v)
            return p if p.is_absolute() else (BASE_DIR / p).resolve()

        urls = [u for u in (os.getenv("OSRM_URLS") or "").split(",") if u.strip()]
        return cls(
            osrm_urls=urls,
            osrm_enable_public_fallback=_env_bool("OSRM_ENABLE_PUBLIC_FALLBACK", True),
            osrm_local_timeout_s=_env_float("OSRM_LOCAL_TIMEOUT_MS", 600) / 1000,
            osrm_remote_timeout_s=_env_float("OSRM_REMOTE_TIMEOUT_MS", 12000) / 1000,
            osrm_down_cooldown_s=_env_float("OSRM_DOWN_COOLDOWN_MS", 15000) / 1000,
            rollout_ratio=normalize_treatment_ratio(_env_float("RECO_ROLLOUT_RATIO", 0.5)),
            experiment_key=os.getenv("RECO_EXPERIMENT_KEY", "reco_v2"),
            data_dir=_path_env("DATA_DIR", BASE_DIR / "data"),
            poi_json_path=_path_env("POI_JSON_PATH"),
            quality_json_path=_path_env("POI_QUALITY_JSON_PATH"),
            algorithm_config_path=_path_env("RECO_CONFIG_PATH"),
            recall_best_effort=_env_bool("RECO_RECALL_BEST_EFFORT", False),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate the configuration.

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if self.poi_json_path is not None and not self.poi_json_path.exists():
            errors.append(f"POI file not found: {self.poi_json_path}")

        if self.quality_json_path is not None and not self.quality_json_path.exists():
            errors.append(f"POI quality file not found: {self.quality_json_path}")

        if self.algorithm_config_path is not None and not self.algorithm_config_path.exists():
            errors.append(f"Algorithm config not found: {self.algorithm_config_path}")

        if not isinstance(logging.getLevelName(self.log_level), int):
            errors.append(f"Unknown log level: {self.log_level}")

        return len(errors) == 0, errors

    def ensure_directories(self):
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def load_algorithm_config(self) -> RecommendationConfig:
        """Algorithm parameters from RECO_CONFIG_PATH (JSON), else defaults; env overrides apply last."""
        data = {}
        if self.algorithm_config_path is not None and self.algorithm_config_path.exists():
            with open(self.algorithm_config_path) as f:
                data = json.load(f)
        config = RecommendationConfig.from_dict(data)
        if self.recall_best_effort:
            config = config.model_copy(update={"recall_best_effort": True})
        return config


def configure_logging(level: Optional[str] = None) -> None:
    """Root logging setup for scripts and services embedding the package."""
    logging.basicConfig(level=(level or get_config().log_level).upper(), format=LOG_FORMAT)


# Global config instance
_config: Optional[ServiceConfig] = None


def get_config() -> ServiceConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ServiceConfig.from_env()
        _config.ensure_directories()
    return _config


def reload_config() -> ServiceConfig:
    """Reload configuration from environment."""
    global _config
    _config = None
    return get_config()
