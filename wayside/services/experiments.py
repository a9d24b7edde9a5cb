"""
A/B assignment for the exploration layer.

A subject is hashed together with the experiment key into a ratio in [0, 1);
ratios below the rollout ratio land in "treatment". The first assignment is
persisted and returned for every later call, even after the rollout ratio
changes, so a subject never flips buckets mid-experiment.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple, Union

from ..models.settings import BucketAssignment
from ..utils.scores import clamp, safe_float

logger = logging.getLogger(__name__)

DEFAULT_EXPERIMENT_KEY = "reco_v2"
DEFAULT_TREATMENT_RATIO = 0.5
_RATIO_DENOMINATOR = 0xFFFFFFFFFFFF


def hash_to_ratio(value: Any) -> float:
    """First 12 hex digits of sha1(value) scaled into [0, 1]."""
    digest = hashlib.sha1(str(value if value is not None else "").encode("utf-8")).hexdigest()
    return int(digest[:12], 16) / _RATIO_DENOMINATOR


def build_subject_key(
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """user:<id>, else session:<id>, else a stable hash of (ip, user agent)."""
    if user_id:
        return f"user:{user_id}"
    if session_id:
        return f"session:{session_id}"
    raw = f"{ip or '0.0.0.0'}|{user_agent or ''}"
    return "anon:" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:24]


def normalize_treatment_ratio(ratio: Any) -> float:
    """Rollout ratio in [0, 1]; values above 1 are percentages."""
    num = safe_float(ratio, DEFAULT_TREATMENT_RATIO)
    return clamp(num / 100 if num > 1 else num, 0.0, 1.0)


class AssignmentStore(Protocol):
    """Protocol for persisted bucket assignments."""

    def get(self, subject_key: str, experiment_key: str) -> Optional[Tuple[str, datetime]]:
        """(bucket, assigned_at) when the subject was already assigned."""
        ...

    def put_if_absent(
        self,
        subject_key: str,
        experiment_key: str,
        bucket: str,
    ) -> Tuple[str, datetime, bool]:
        """Store the bucket unless one exists. Returns (bucket, assigned_at, created)."""
        ...


class InMemoryAssignmentStore:
    """Assignments held in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[str, str], Tuple[str, datetime]] = {}

    def get(self, subject_key: str, experiment_key: str) -> Optional[Tuple[str, datetime]]:
        with self._lock:
            return self._rows.get((subject_key, experiment_key))

    def _after_insert(self) -> None:
        """Hook for durable subclasses; called under the lock."""

    def put_if_absent(
        self,
        subject_key: str,
        experiment_key: str,
        bucket: str,
    ) -> Tuple[str, datetime, bool]:
        with self._lock:
            existing = self._rows.get((subject_key, experiment_key))
            if existing is not None:
                return existing[0], existing[1], False
            assigned_at = datetime.now(timezone.utc)
            self._rows[(subject_key, experiment_key)] = (bucket, assigned_at)
            self._after_insert()
            return bucket, assigned_at, True


class JsonAssignmentStore(InMemoryAssignmentStore):
    """Assignment store backed by a JSON file."""

    def __init__(self, path: Union[Path, str]):
        super().__init__()
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.exists():
            with open(self._path) as f:
                data = json.load(f)
            for row in data.get("assignments", []) if isinstance(data, dict) else []:
                key = (row["subject_key"], row["experiment_key"])
                self._rows[key] = (row["bucket"], datetime.fromisoformat(row["assigned_at"]))

    def _after_insert(self) -> None:
        rows = [
            {
                "subject_key": subject,
                "experiment_key": experiment,
                "bucket": bucket,
                "assigned_at": assigned_at.isoformat(),
            }
            for (subject, experiment), (bucket, assigned_at) in self._rows.items()
        ]
        with open(self._path, "w") as f:
            json.dump({"assignments": rows}, f, indent=2)


def assign_bucket(
    store: AssignmentStore,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    experiment_key: str = DEFAULT_EXPERIMENT_KEY,
    treatment_ratio: Any = DEFAULT_TREATMENT_RATIO,
) -> BucketAssignment:
    """Deterministic, persisted bucket assignment for one subject."""
    subject_key = build_subject_key(user_id, session_id, ip, user_agent)
    ratio = normalize_treatment_ratio(treatment_ratio)

    existing = store.get(subject_key, experiment_key)
    if existing is not None:
        return BucketAssignment(
            subject_key=subject_key,
            experiment_key=experiment_key,
            bucket=existing[0],
            treatment_ratio=ratio,
            assigned_at=existing[1],
            from_cache=True,
        )

    bucket = "treatment" if hash_to_ratio(f"{experiment_key}|{subject_key}") < ratio else "control"
    stored, assigned_at, created = store.put_if_absent(subject_key, experiment_key, bucket)
    if created:
        logger.info("[ab] ASSIGNED subject=%s experiment=%s bucket=%s", subject_key, experiment_key, stored)
    return BucketAssignment(
        subject_key=subject_key,
        experiment_key=experiment_key,
        bucket=stored,
        treatment_ratio=ratio,
        assigned_at=assigned_at,
        from_cache=not created,
    )
