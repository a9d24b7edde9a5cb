"""
Collaborator contracts and their in-memory/file implementations.

Each store is a Protocol so a database- or HTTP-backed implementation can be
swapped in via AppState without touching the pipeline stages.
"""

from .event_store import EventStore, InMemoryEventStore, JsonlEventStore
from .experiments import (
    AssignmentStore,
    InMemoryAssignmentStore,
    JsonAssignmentStore,
    assign_bucket,
    build_subject_key,
    hash_to_ratio,
)
from .feature_store import (
    InMemoryInterestStore,
    InMemoryPoiQualityStore,
    InterestStore,
    PoiQualityStore,
)
from .poi_store import InMemoryPoiStore, PoiStore
from .routing import OsrmRoutingEngine, RoutingEngine, parse_backends
from .settings_store import (
    InMemorySettingsStore,
    JsonSettingsStore,
    SettingsStore,
    load_settings,
    save_settings,
)

__all__ = [
    "AssignmentStore",
    "EventStore",
    "InMemoryAssignmentStore",
    "InMemoryEventStore",
    "InMemoryInterestStore",
    "InMemoryPoiQualityStore",
    "InMemoryPoiStore",
    "InMemorySettingsStore",
    "InterestStore",
    "JsonAssignmentStore",
    "JsonSettingsStore",
    "JsonlEventStore",
    "OsrmRoutingEngine",
    "PoiQualityStore",
    "PoiStore",
    "RoutingEngine",
    "SettingsStore",
    "assign_bucket",
    "build_subject_key",
    "hash_to_ratio",
    "load_settings",
    "parse_backends",
    "save_settings",
]
