"""
Routing engine abstraction.

RoutingEngine.route(waypoints, profile) returns a RouteResult, None when the
engine reports that no route exists, or raises RoutingEngineError when the
engine is unreachable or the profile is unsupported.

OsrmRoutingEngine talks to one or more OSRM backends over HTTP. Backends are
tried in order; a backend with a transport error or a 5xx reply is skipped for
a cooldown period (circuit breaker) so a dead local router does not cost a
timeout on every request.
"""

import ipaddress
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence
from urllib.parse import urlparse

import httpx

from ..errors import RoutingEngineError
from ..models.route import RoutePoint, RouteResult

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_OSRM = "http://localhost:5000"
DEFAULT_PUBLIC_OSRM = "https://router.project-osrm.org"

# OSRM response codes meaning "no route", as opposed to a backend failure.
NOT_FOUND_CODES = {"NoRoute", "NoSegment"}


class RoutingEngine(Protocol):
    """Protocol for the turn-by-turn routing collaborator."""

    async def route(
        self,
        waypoints: Sequence[RoutePoint],
        profile: str = "driving",
    ) -> Optional[RouteResult]:
        """Route through waypoints with the given profile; None when no route exists."""
        ...


def parse_backends(
    urls: Iterable[str],
    enable_public_fallback: bool = True,
) -> List[str]:
    """Normalize backend URLs: strip trailing slashes, keep http(s) only, dedupe in order."""
    backends = [str(u).strip().rstrip("/") for u in urls if u and str(u).strip()]
    if not backends:
        backends = [DEFAULT_LOCAL_OSRM]
    if enable_public_fallback and DEFAULT_PUBLIC_OSRM not in backends:
        backends.append(DEFAULT_PUBLIC_OSRM)
    seen = set()
    result = []
    for url in backends:
        if not url.lower().startswith(("http://", "https://")) or url in seen:
            continue
        seen.add(url)
        result.append(url)
    return result


def is_local_backend(backend: str) -> bool:
    """True for localhost and private-network hosts (these get the short timeout)."""
    host = (urlparse(backend).hostname or "").lower()
    if host in ("localhost", "0.0.0.0"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return addr.is_loopback or addr.is_private


def parse_osrm_route(payload: Dict, resolved_mode: str, backend: Optional[str] = None) -> Optional[RouteResult]:
    """First route of an OSRM response as a RouteResult; None without usable geometry."""
    routes = payload.get("routes") or []
    if not routes:
        return None
    route = routes[0] or {}
    coords = (route.get("geometry") or {}).get("coordinates")
    if not isinstance(coords, list):
        return None
    geometry = []
    for pair in coords:
        if isinstance(pair, (list, tuple)) and len(pair) >= 2:
            geometry.append(RoutePoint(lat=float(pair[1]), lng=float(pair[0])))
    if len(geometry) < 2:
        return None
    duration = route.get("duration")
    return RouteResult(
        geometry=geometry,
        distance_m=float(route.get("distance") or 0.0),
        duration_s=float(duration) if duration is not None else None,
        resolved_mode=resolved_mode,
        backend=backend,
    )


class OsrmRoutingEngine:
    """Routing engine backed by OSRM HTTP backends with a per-backend circuit breaker."""

    def __init__(
        self,
        backends: Sequence[str],
        local_timeout_s: float = 0.6,
        remote_timeout_s: float = 12.0,
        cooldown_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backends = list(backends)
        self.local_timeout_s = local_timeout_s
        self.remote_timeout_s = remote_timeout_s
        self.cooldown_s = cooldown_s
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        # backend -> monotonic time when it may be tried again
        self._circuit: Dict[str, float] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _timeout_for(self, backend: str) -> float:
        return self.local_timeout_s if is_local_backend(backend) else self.remote_timeout_s

    def is_open(self, backend: str) -> bool:
        """True when the backend may be tried (its cooldown has elapsed)."""
        return self._clock() >= self._circuit.get(backend, 0.0)

    def _mark_failure(self, backend: str) -> None:
        self._circuit[backend] = self._clock() + self.cooldown_s

    def _mark_success(self, backend: str) -> None:
        self._circuit[backend] = 0.0

    async def route(
        self,
        waypoints: Sequence[RoutePoint],
        profile: str = "driving",
    ) -> Optional[RouteResult]:
        if len(waypoints) < 2:
            raise RoutingEngineError("At least two waypoints are required", ["empty_coordinates"])
        if not self.backends:
            raise RoutingEngineError("No routing backends configured", ["no_backends_configured"])

        coordinates = ";".join(f"{p.lng},{p.lat}" for p in waypoints)
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "false",
            "alternatives": "false",
        }
        client = await self._get_client()
        errors: List[str] = []

        for backend in self.backends:
            if not self.is_open(backend):
                errors.append(f"{backend}:circuit_open")
                continue

            url = f"{backend}/route/v1/{profile}/{coordinates}"
            try:
                resp = await client.get(url, params=params, timeout=self._timeout_for(backend))
            except httpx.RequestError as e:
                self._mark_failure(backend)
                errors.append(f"{backend}:{type(e).__name__}")
                logger.warning("[routing] BACKEND_FAILED backend=%s error=%s", backend, e)
                continue

            try:
                payload = resp.json()
            except ValueError:
                payload = {}
            code = payload.get("code") if isinstance(payload, dict) else None

            if code in NOT_FOUND_CODES:
                self._mark_success(backend)
                logger.info("[routing] NO_ROUTE backend=%s profile=%s", backend, profile)
                return None

            if resp.is_success and isinstance(payload, dict):
                route = parse_osrm_route(payload, resolved_mode=profile, backend=backend)
                if route is not None:
                    self._mark_success(backend)
                    return route

            # Only server errors trip the breaker; a 4xx (e.g. unsupported
            # profile) says nothing about the backend's health for other profiles.
            if resp.status_code >= 500:
                self._mark_failure(backend)
            errors.append(f"{backend}:status_{resp.status_code}")
            logger.warning(
                "[routing] BACKEND_BAD_RESPONSE backend=%s status=%s code=%s",
                backend,
                resp.status_code,
                code,
            )

        raise RoutingEngineError(
            f"All routing backends failed for profile {profile}", errors
        )
