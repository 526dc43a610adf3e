"""Key-value persistence for user preferences: favorites and per-repository state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .models import Repository, format_datetime, parse_datetime

logger = logging.getLogger(__name__)

FAVORITES_KEY = "favorites"
REPOSITORY_STATE_KEY = "repositoryState"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-process store, used when nothing needs to survive the process."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore:
    """Single JSON object on disk. Last write wins."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


class FavoriteStore:
    """Set of favorite repository paths, persisted under one store key."""

    def __init__(self, store: KeyValueStore, key: str = FAVORITES_KEY):
        self.store = store
        self.key = key
        stored = store.get(key, []) or []
        self._favorites: set[str] = set(stored) if isinstance(stored, list) else set()

    def get_favorites(self) -> list[str]:
        return sorted(self._favorites)

    def is_favorite(self, path: str) -> bool:
        return path in self._favorites

    def add(self, path: str) -> None:
        if path not in self._favorites:
            self._favorites.add(path)
            self._save()

    def remove(self, path: str) -> None:
        if path in self._favorites:
            self._favorites.discard(path)
            self._save()

    def set_favorite(self, path: str, is_favorite: bool) -> None:
        if is_favorite:
            self.add(path)
        else:
            self.remove(path)

    def toggle(self, path: str) -> bool:
        """Flip the flag for ``path``. Returns the new value."""
        new_value = not self.is_favorite(path)
        self.set_favorite(path, new_value)
        return new_value

    def clear(self) -> None:
        self._favorites.clear()
        self._save()

    def import_favorites(self, paths: list[str]) -> None:
        self._favorites = set(paths)
        self._save()

    def export_favorites(self) -> list[str]:
        return self.get_favorites()

    def count(self) -> int:
        return len(self._favorites)

    def _save(self) -> None:
        try:
            self.store.set(self.key, self.get_favorites())
        except OSError as e:
            logger.warning("Failed to save favorites: %s", e)


class RepositoryStateStore:
    """User-entered state for each repository, keyed by path.

    Holds what a rescan cannot rediscover: display name, tags, the archive
    flag and access history. It lives next to favorites so it outlasts the
    cache.
    """

    def __init__(self, store: KeyValueStore, key: str = REPOSITORY_STATE_KEY):
        self.store = store
        self.key = key
        stored = store.get(key, {}) or {}
        self._states: dict[str, dict[str, Any]] = (
            {p: s for p, s in stored.items() if isinstance(s, dict)} if isinstance(stored, dict) else {}
        )

    def __contains__(self, path: object) -> bool:
        return path in self._states

    def get(self, path: str) -> dict[str, Any] | None:
        state = self._states.get(path)
        return dict(state) if state is not None else None

    def save(self, repo: Repository) -> None:
        self._states[repo.path] = {
            "display_name": repo.display_name,
            "tags": list(repo.tags),
            "is_archived": repo.is_archived,
            "access_count": repo.access_count,
            "created_at": format_datetime(repo.created_at),
            "last_accessed": format_datetime(repo.last_accessed),
        }
        self._save()

    def apply(self, repo: Repository) -> bool:
        """Copy stored state onto ``repo``. Returns False if none is stored or it is unreadable."""
        state = self._states.get(repo.path)
        if state is None:
            return False
        try:
            tags = [str(t) for t in state.get("tags") or []]
            access_count = int(state.get("access_count", 0))
            created_at = parse_datetime(state.get("created_at")) if state.get("created_at") else repo.created_at
            last_accessed = (
                parse_datetime(state.get("last_accessed")) if state.get("last_accessed") else repo.last_accessed
            )
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring corrupt stored state for %s: %s", repo.path, e)
            return False
        repo.display_name = state.get("display_name") or None
        repo.tags = tags
        repo.is_archived = bool(state.get("is_archived", False))
        repo.access_count = access_count
        repo.created_at = created_at
        repo.last_accessed = last_accessed
        return True

    def _save(self) -> None:
        try:
            self.store.set(self.key, dict(self._states))
        except OSError as e:
            logger.warning("Failed to save repository state: %s", e)
