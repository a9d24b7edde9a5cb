"""
Error taxonomy for upstream collaborators.

Only upstream failures are exceptions. A missing route is a structured
``no_route`` result, an arm without history disables exploration via
diagnostics, and malformed events are counted and dropped.
"""

from typing import Optional


class WaysideError(Exception):
    """Base class for errors raised by this package."""


class UpstreamError(WaysideError):
    """A collaborator (routing engine, POI store, feature store) failed."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class RoutingEngineError(UpstreamError):
    """Routing engine unreachable or returned an unusable response."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, source="routing")
        self.errors = list(errors or [])


class PoiStoreError(UpstreamError):
    """Geospatial POI lookup failed."""


class UpstreamTimeoutError(UpstreamError):
    """A collaborator call exceeded its deadline."""


class SettingsError(WaysideError):
    """Settings could not be saved (e.g. missing user id)."""
