"""
Source health tracking for fetch reliability.

Tracks per-source success/failure history and decides which sources the
selector should skip. Three consecutive failures make a source unavailable;
any success restores it. Unavailable sources get one re-probe after a
cool-down so they are not locked out forever.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)


# Consecutive failures before a source is skipped
CONSECUTIVE_FAILURES_UNAVAILABLE = 3

# Cool-down before an unavailable source is offered again
DEFAULT_REPROBE_AFTER = timedelta(minutes=10)


@dataclass
class SourceStatus:
    """Availability state for a single source."""
    source_id: str
    available: bool = True
    consecutive_failures: int = 0
    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None
    last_checked_at: Optional[str] = None
    integrity_verified: bool = False
    last_error: Optional[str] = None
    total_successes: int = 0
    total_failures: int = 0

    def record_success(self, integrity_verified: bool = False, timestamp: Optional[datetime] = None):
        """Record a successful fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_success_at = timestamp.isoformat()
        self.last_checked_at = self.last_success_at
        self.consecutive_failures = 0
        self.last_error = None
        self.available = True
        self.integrity_verified = integrity_verified
        self.total_successes += 1

    def record_failure(self, error: str = "", timestamp: Optional[datetime] = None):
        """Record a failed fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_failure_at = timestamp.isoformat()
        self.last_checked_at = self.last_failure_at
        self.consecutive_failures += 1
        self.last_error = error or None
        self.total_failures += 1

        if self.consecutive_failures >= CONSECUTIVE_FAILURES_UNAVAILABLE:
            if self.available:
                logger.warning(
                    f"Source {self.source_id} marked unavailable after "
                    f"{self.consecutive_failures} consecutive failures"
                )
            self.available = False

    def reprobe_due(self, now: datetime, reprobe_after: timedelta) -> bool:
        """True when an unavailable source has cooled down long enough to be tried again."""
        if self.available or not self.last_failure_at:
            return False
        last_failure = datetime.fromisoformat(self.last_failure_at)
        return now - last_failure >= reprobe_after


class HealthTracker:
    """Tracks availability for all sources. Safe for concurrent use."""

    def __init__(self, reprobe_after: timedelta = DEFAULT_REPROBE_AFTER):
        self.sources: Dict[str, SourceStatus] = {}
        self.reprobe_after = reprobe_after
        self.last_updated_at: Optional[str] = None
        self._lock = threading.Lock()

    def _get_or_create(self, source_id: str) -> SourceStatus:
        if source_id not in self.sources:
            self.sources[source_id] = SourceStatus(source_id=source_id)
        return self.sources[source_id]

    def record_success(self, source_id: str, integrity_verified: bool = False,
                       timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            self._get_or_create(source_id).record_success(integrity_verified, timestamp)

    def record_failure(self, source_id: str, error: str = "",
                       timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            self._get_or_create(source_id).record_failure(error, timestamp)

    def is_available(self, source_id: str) -> bool:
        with self._lock:
            status = self.sources.get(source_id)
            return status is None or status.available

    def status(self, source_id: str) -> SourceStatus:
        """Snapshot copy of a source's status (created lazily)."""
        with self._lock:
            return SourceStatus(**asdict(self._get_or_create(source_id)))

    def unavailable_ids(self, now: Optional[datetime] = None) -> Set[str]:
        """
        Sources the selector should skip right now.

        Unavailable sources whose cool-down has elapsed are left out so the
        next request re-probes them.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            skipped = set()
            for source_id, status in self.sources.items():
                if status.available:
                    continue
                if status.reprobe_due(now, self.reprobe_after):
                    logger.info(f"Re-probing {source_id} after cool-down")
                    continue
                skipped.add(source_id)
            return skipped

    def get_summary(self, source_ids: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Get summary of availability across sources."""
        with self._lock:
            ids = list(source_ids) if source_ids is not None else list(self.sources)
            unavailable = [s for s in ids if s in self.sources and not self.sources[s].available]
            return {
                "total_sources": len(ids),
                "available": len(ids) - len(unavailable),
                "unavailable_sources": sorted(unavailable),
                "overall_status": "DEGRADED" if unavailable else "OK",
            }

    def to_dict(self) -> Dict:
        """Serialize to dict."""
        with self._lock:
            sources = {k: asdict(v) for k, v in self.sources.items()}
        return {
            "last_updated_at": self.last_updated_at,
            "reprobe_after_seconds": int(self.reprobe_after.total_seconds()),
            "sources": sources,
            "summary": self.get_summary(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HealthTracker":
        """Deserialize from dict."""
        reprobe = data.get("reprobe_after_seconds")
        tracker = cls(timedelta(seconds=reprobe) if reprobe is not None else DEFAULT_REPROBE_AFTER)
        tracker.last_updated_at = data.get("last_updated_at")

        for source_id, raw in data.get("sources", {}).items():
            tracker.sources[source_id] = SourceStatus(
                source_id=raw.get("source_id", source_id),
                available=raw.get("available", True),
                consecutive_failures=raw.get("consecutive_failures", 0),
                last_success_at=raw.get("last_success_at"),
                last_failure_at=raw.get("last_failure_at"),
                last_checked_at=raw.get("last_checked_at"),
                integrity_verified=raw.get("integrity_verified", False),
                last_error=raw.get("last_error"),
                total_successes=raw.get("total_successes", 0),
                total_failures=raw.get("total_failures", 0),
            )

        return tracker


def load_health_tracker(path: str, reprobe_after: Optional[timedelta] = None) -> HealthTracker:
    """Load health tracker from disk, or create new one."""
    tracker = HealthTracker()
    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                tracker = HealthTracker.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Could not load health tracker from {path}: {e}")

    if reprobe_after is not None:
        tracker.reprobe_after = reprobe_after
    return tracker


def save_health_tracker(tracker: HealthTracker, path: str) -> None:
    """Save health tracker to disk."""
    tracker.last_updated_at = datetime.now(timezone.utc).isoformat()
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        json.dump(tracker.to_dict(), f, indent=2)
