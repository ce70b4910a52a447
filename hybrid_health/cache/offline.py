"""
Offline cache: last successful payload per category.

One JSON file per category under the cache directory, last write wins.
Writes take an exclusive file lock and go through a temp file plus rename so
readers never see a partial snapshot. With no directory the cache lives in
memory only, holding and handing out private copies of each snapshot.
"""

import copy
import fcntl
import json
import logging
import os
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import CacheError

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=30)


@dataclass
class CachedSnapshot:
    category: str
    payload: Any
    metadata: Dict[str, Any]
    stored_at: datetime

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or datetime.now(timezone.utc)) - self.stored_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "payload": self.payload,
            "metadata": self.metadata,
            "stored_at": self.stored_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedSnapshot":
        return cls(
            category=data["category"],
            payload=data.get("payload"),
            metadata=data.get("metadata") or {},
            stored_at=datetime.fromisoformat(data["stored_at"]),
        )


def _file_name(category: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", category) + ".json"


class OfflineCache:

    def __init__(self, directory: Optional[str] = None, max_age: timedelta = DEFAULT_MAX_AGE):
        self.directory = Path(directory) if directory else None
        self.max_age = max_age
        self._memory: Dict[str, CachedSnapshot] = {}
        self._lock = threading.Lock()

    def _path(self, category: str) -> Path:
        return self.directory / _file_name(category)

    def put(self, category: str, payload: Any, metadata: Optional[Dict[str, Any]] = None,
            stored_at: Optional[datetime] = None) -> CachedSnapshot:
        """
        Store the snapshot for a category, replacing any previous one.

        Raises:
            CacheError: If the snapshot cannot be serialized or written
        """
        snapshot = CachedSnapshot(
            category=category,
            payload=payload,
            metadata=dict(metadata or {}),
            stored_at=stored_at or datetime.now(timezone.utc),
        )

        with self._lock:
            if self.directory is None:
                self._memory[category] = copy.deepcopy(snapshot)
                return snapshot

            try:
                content = json.dumps(snapshot.to_dict(), ensure_ascii=False, sort_keys=True)
            except (TypeError, ValueError) as e:
                raise CacheError(f"Failed to serialize snapshot for {category}: {e}") from e

            path = self._path(category)
            tmp_path = path.with_suffix(".json.tmp")
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, 'w') as f:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                    try:
                        f.write(content)
                        f.flush()
                        os.fsync(f.fileno())
                    finally:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                os.replace(tmp_path, path)
            except OSError as e:
                raise CacheError(f"Failed to write snapshot for {category}: {e}") from e

        logger.debug(f"Cached snapshot for {category}")
        return snapshot

    def get(self, category: str, ignore_age: bool = False,
            now: Optional[datetime] = None) -> Optional[CachedSnapshot]:
        """
        Read the snapshot for a category.

        Returns:
            The snapshot, or None when absent, unreadable, or older than
            max_age (unless ignore_age)
        """
        with self._lock:
            if self.directory is None:
                snapshot = copy.deepcopy(self._memory.get(category))
            else:
                snapshot = self._read(category)

        if snapshot is None:
            return None
        if not ignore_age and snapshot.age(now) > self.max_age:
            logger.debug(f"Snapshot for {category} is older than {self.max_age.days} days")
            return None
        return snapshot

    def _read(self, category: str) -> Optional[CachedSnapshot]:
        path = self._path(category)
        if not path.exists():
            return None
        try:
            with open(path, 'r') as f:
                return CachedSnapshot.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Could not read cached snapshot {path}: {e}")
            return None

    def clear(self, category: Optional[str] = None) -> None:
        with self._lock:
            if self.directory is None:
                if category is None:
                    self._memory.clear()
                else:
                    self._memory.pop(category, None)
                return

            if not self.directory.exists():
                return
            paths = [self._path(category)] if category else list(self.directory.glob("*.json"))
            for path in paths:
                if path.exists():
                    path.unlink()
