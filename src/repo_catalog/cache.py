"""On-disk snapshot of the catalog.

The cache is an optimization only. Any read problem makes it look absent
(forcing a full rescan) and any write problem is logged and skipped.

File layout::

    {"version": "1.0.0", "timestamp": <epoch ms>,
     "targetDirectories": [...], "repositories": [<entry>, ...]}

where each entry is a serialized :class:`Repository` plus
``cache_timestamp`` and ``directory_last_modified`` (both epoch ms).
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .config import DEFAULT_CACHE_MAX_AGE
from .models import Repository, normalize_path

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0.0"


def _now_ms() -> int:
    return int(time.time() * 1000)


def directory_mtime_ms(path: str) -> int:
    """Modification time of ``path`` in epoch ms, 0 if it cannot be read."""
    try:
        return int(os.stat(path).st_mtime * 1000)
    except OSError:
        return 0


@dataclass
class CacheEntry:
    repository: Repository
    cache_timestamp: int
    directory_last_modified: int

    @property
    def path(self) -> str:
        return self.repository.path

    def to_dict(self) -> dict[str, Any]:
        data = self.repository.to_dict()
        data["cache_timestamp"] = self.cache_timestamp
        data["directory_last_modified"] = self.directory_last_modified
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            repository=Repository.from_dict(data),
            cache_timestamp=int(data.get("cache_timestamp", 0)),
            directory_last_modified=int(data.get("directory_last_modified", 0)),
        )

    @classmethod
    def capture(cls, repository: Repository) -> CacheEntry:
        return cls(repository, _now_ms(), directory_mtime_ms(repository.path))


@dataclass
class CacheStats:
    exists: bool
    repository_count: int = 0
    last_updated: datetime | None = None
    size: int = 0


class CatalogCache:
    """Versioned JSON snapshot keyed on the configured root directory set."""

    def __init__(
        self,
        path: str | Path,
        target_directories: Iterable[str] = (),
        max_age_seconds: int = DEFAULT_CACHE_MAX_AGE,
    ):
        self.path = Path(path)
        self.target_directories = [normalize_path(d) for d in target_directories]
        self.max_age_seconds = max_age_seconds

    def _read_document(self) -> dict[str, Any] | None:
        """Parsed cache document if it is valid for the current configuration."""
        try:
            with open(self.path) as f:
                doc = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Failed to load cache %s: %s", self.path, e)
            return None

        if not isinstance(doc, dict) or doc.get("version") != CACHE_VERSION:
            logger.info("Cache version mismatch, ignoring %s", self.path)
            return None

        recorded = [normalize_path(d) for d in doc.get("targetDirectories") or []]
        if set(recorded) != set(self.target_directories):
            logger.info("Cache root directories changed, ignoring %s", self.path)
            return None

        try:
            timestamp = int(doc.get("timestamp", 0))
        except (TypeError, ValueError):
            return None
        if _now_ms() - timestamp >= self.max_age_seconds * 1000:
            logger.info("Cache expired, ignoring %s", self.path)
            return None

        return doc

    def _write(self, entries: list[CacheEntry], timestamp: int) -> None:
        doc = {
            "version": CACHE_VERSION,
            "timestamp": timestamp,
            "targetDirectories": list(self.target_directories),
            "repositories": [e.to_dict() for e in entries],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(json.dumps(doc, indent=2))
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Failed to save cache %s: %s", self.path, e)

    def _entries(self, doc: dict[str, Any]) -> list[CacheEntry] | None:
        try:
            return [CacheEntry.from_dict(item) for item in doc.get("repositories") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Corrupt cache entries in %s: %s", self.path, e)
            return None

    def load(self) -> list[CacheEntry] | None:
        """Cached entries, or None when the cache is absent, stale or mismatched."""
        doc = self._read_document()
        if doc is None:
            return None
        return self._entries(doc)

    def save(self, repositories: Iterable[Repository]) -> None:
        self._write([CacheEntry.capture(r) for r in repositories], _now_ms())

    def update_one(self, repository: Repository) -> None:
        """Replace or append one entry. No-op when there is no valid cache."""
        doc = self._read_document()
        entries = self._entries(doc) if doc else None
        if entries is None:
            return
        fresh = CacheEntry.capture(repository)
        for i, entry in enumerate(entries):
            if entry.path == repository.path:
                entries[i] = fresh
                break
        else:
            entries.append(fresh)
        self._write(entries, int(doc["timestamp"]))

    def cleanup(self, valid_paths: Iterable[str]) -> None:
        """Drop entries whose path is not in ``valid_paths``."""
        doc = self._read_document()
        entries = self._entries(doc) if doc else None
        if entries is None:
            return
        valid = set(valid_paths)
        entries = [e for e in entries if e.path in valid]
        self._write(entries, int(doc["timestamp"]))

    def is_directory_changed(self, entry: CacheEntry) -> bool:
        current = directory_mtime_ms(entry.path)
        if current == 0:
            return True
        return current > entry.directory_last_modified

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to clear cache %s: %s", self.path, e)

    def stats(self) -> CacheStats:
        try:
            st = self.path.stat()
        except OSError:
            return CacheStats(exists=False)
        entries = self.load()
        return CacheStats(
            exists=True,
            repository_count=len(entries) if entries else 0,
            last_updated=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            size=st.st_size,
        )
