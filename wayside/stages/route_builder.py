"""
Route builder: one routing call with a single driving fallback.

A non-driving profile that errors or finds nothing is retried once with
"driving". No valid geometry yields route=None plus a warning; the caller
turns that into a "no route" result rather than an exception.
"""

import logging
from typing import Optional, Sequence

from ..errors import UpstreamError
from ..models.mode import DEFAULT_MODE, ModeConfig
from ..models.route import RouteOutcome, RoutePoint, RouteResult
from ..services.routing import RoutingEngine
from ..utils.concurrency import with_deadline

logger = logging.getLogger(__name__)

NO_ROUTE_WARNING = "No route found"


def _fallback_warning(profile: str) -> str:
    return f"Routing profile {profile} unavailable, fallback to driving."


def _has_geometry(route: Optional[RouteResult]) -> bool:
    return route is not None and len(route.geometry) >= 2


async def build_route(
    engine: RoutingEngine,
    waypoints: Sequence[RoutePoint],
    mode_config: ModeConfig,
    timeout_s: Optional[float] = None,
) -> RouteOutcome:
    """
    Route through waypoints (start, optional vias, end) for the mode.

    Raises UpstreamError only when the driving profile itself fails.
    """
    profile = mode_config.routing_profile or DEFAULT_MODE
    resolved_mode = mode_config.mode
    warning: Optional[str] = None
    route: Optional[RouteResult] = None

    try:
        route = await with_deadline(engine.route(waypoints, profile), timeout_s, "routing")
    except UpstreamError as e:
        if profile == DEFAULT_MODE:
            raise
        warning = _fallback_warning(profile)
        logger.warning("[route] PROFILE_UNAVAILABLE profile=%s error=%s", profile, e)

    if not _has_geometry(route) and profile != DEFAULT_MODE:
        route = await with_deadline(engine.route(waypoints, DEFAULT_MODE), timeout_s, "routing")
        resolved_mode = DEFAULT_MODE

    fallback_used = resolved_mode != mode_config.mode
    if not _has_geometry(route):
        logger.info("[route] NO_ROUTE mode=%s waypoints=%s", mode_config.mode, len(waypoints))
        return RouteOutcome(
            route=None,
            resolved_mode=resolved_mode,
            fallback_used=fallback_used,
            warning=warning or NO_ROUTE_WARNING,
        )

    route = route.model_copy(
        update={
            "resolved_mode": resolved_mode,
            "fallback_used": fallback_used,
            "warning": warning,
        }
    )
    return RouteOutcome(
        route=route,
        resolved_mode=resolved_mode,
        fallback_used=fallback_used,
        warning=warning,
    )
