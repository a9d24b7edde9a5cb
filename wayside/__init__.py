"""
Wayside: route-aware POI recommendation.

Single entry point for the package:
- models/: RecommendationConfig, ModeConfig, route/POI/profile/result records
- stages/: route builder, profile, recall, features, base scoring, bandit,
  diversity, finalize and the orchestrator
- services/: collaborator contracts (routing engine, POI store, feature stores,
  event sink, settings, A/B assignment) with in-memory and file implementations
- state: AppState, which wires config and stores for request-level calls
"""

from .models.config import DEFAULT_CONFIG, RecommendationConfig, resolve_config
from .models.result import RecommendationRequest, RecommendationResult
from .stages.orchestrator import PipelineDeps, run_recommendation

__version__ = "0.2.0"

__all__ = [
    "DEFAULT_CONFIG",
    "PipelineDeps",
    "RecommendationConfig",
    "RecommendationRequest",
    "RecommendationResult",
    "resolve_config",
    "run_recommendation",
]
