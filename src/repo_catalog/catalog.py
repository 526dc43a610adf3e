"""The repository catalog: owns the in-memory table and coordinates scans."""

from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable

from .cache import CatalogCache
from .config import CatalogConfig
from .filters import FilterCriteria, SortOption, apply, search as search_repos, sort_repositories
from .models import Repository, normalize_path, utc_now
from .scanner import CancelToken, DiscoveryScanner, ProgressCallback, ScanCancelled
from .store import FavoriteStore, KeyValueStore, MemoryStore, RepositoryStateStore

logger = logging.getLogger(__name__)


class RepositoryNotFoundError(KeyError):
    """No repository with the given path is in the catalog."""


class ScanStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NOTHING_TO_DO = "nothing_to_do"
    ALREADY_RUNNING = "already_running"


class CatalogEvent(str, Enum):
    UPDATED = "updated"
    FAVORITE_CHANGED = "favorite_changed"
    REPOSITORY_REFRESHED = "repository_refreshed"
    CLEARED = "cleared"


# event, affected path (None for catalog-wide events)
Listener = Callable[[CatalogEvent, "str | None"], None]


@dataclass
class CatalogStats:
    total: int = 0
    favorites: int = 0
    archived: int = 0
    by_language: dict[str, int] = field(default_factory=dict)
    last_scan_at: datetime | None = None


def _noop_progress(message: str, percent: int | None = None) -> None:
    pass


class RepositoryCatalog:
    """In-memory catalog of repositories keyed by normalized path.

    The catalog is the only writer of its table. Scans build a fresh table
    and swap it in only when they complete; a cancelled scan changes nothing.
    """

    def __init__(
        self,
        config: CatalogConfig,
        scanner: DiscoveryScanner | None = None,
        cache: CatalogCache | None = None,
        store: KeyValueStore | None = None,
    ):
        self.config = config
        self.scanner = scanner or DiscoveryScanner(max_workers=config.max_concurrent_scans)
        self.cache = cache
        store = store if store is not None else MemoryStore()
        self.favorites = FavoriteStore(store)
        self.user_state = RepositoryStateStore(store)
        self._repositories: dict[str, Repository] = {}
        self._lock = threading.RLock()
        self._scan_lock = threading.Lock()
        self._listeners: list[Listener] = []
        self.last_scan_at: datetime | None = None

    # --- notifications ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: CatalogEvent, path: str | None = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, path)
            except Exception:
                logger.exception("Catalog listener failed on %s", event.value)

    # --- scanning ---

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    def scan(
        self,
        config: CatalogConfig | None = None,
        cancel_token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ScanStatus:
        """Rescan the configured roots and replace the catalog with the result."""
        progress = on_progress or _noop_progress
        if not self._scan_lock.acquire(blocking=False):
            logger.warning("Scan already in progress")
            progress("Scan already in progress", None)
            return ScanStatus.ALREADY_RUNNING

        try:
            if config is not None:
                self.config = config
            cfg = self.config
            roots = cfg.normalized_roots()

            progress("Preparing to scan...", 0)
            if not roots:
                logger.warning("No root paths configured for scanning")
                progress("No scan paths configured", 100)
                return ScanStatus.NOTHING_TO_DO

            logger.info("Starting repository scan. Paths: %s", ", ".join(roots))
            self.scanner.max_workers = max(1, cfg.max_concurrent_scans)
            try:
                found = self.scanner.scan(
                    roots,
                    max_depth=cfg.scan_depth,
                    include_hidden=cfg.include_hidden,
                    exclude_paths=cfg.exclude_paths,
                    cancel_token=cancel_token,
                    on_progress=progress,
                )
            except ScanCancelled:
                logger.info("Repository scan cancelled")
                progress("Scan cancelled", 100)
                return ScanStatus.CANCELLED

            progress("Updating repository data...", 90)
            with self._lock:
                self._repositories = self._merge(found)
                self.last_scan_at = utc_now()
                snapshot = list(self._repositories.values())

            progress("Saving cache...", 95)
            if self.cache is not None:
                self.cache.save(snapshot)

            logger.info("Repository scan completed. Found %d repositories", len(snapshot))
            progress(f"Complete! Found {len(snapshot)} repositories", 100)
            self._emit(CatalogEvent.UPDATED)
            return ScanStatus.COMPLETED
        finally:
            self._scan_lock.release()

    def _merge(self, found: dict[str, Repository]) -> dict[str, Repository]:
        """Carry user state over from the previous table and the state store."""
        merged: dict[str, Repository] = {}
        for path, repo in found.items():
            previous = self._repositories.get(path)
            if not self.user_state.apply(repo) and previous is not None:
                repo.display_name = previous.display_name
                repo.tags = list(previous.tags)
                repo.is_archived = previous.is_archived
                repo.access_count = previous.access_count
                repo.created_at = previous.created_at
                repo.last_accessed = previous.last_accessed
            repo.is_favorite = self.favorites.is_favorite(path)
            merged[path] = repo
        return merged

    def load_from_cache(self) -> bool:
        """Restore the catalog from a valid cache. Returns False if there is none.

        Entries whose directory vanished are dropped; entries whose directory
        changed since capture are re-extracted.
        """
        if self.cache is None:
            return False
        entries = self.cache.load()
        if entries is None:
            return False

        table: dict[str, Repository] = {}
        stale: list[str] = []
        for entry in entries:
            if not os.path.isdir(entry.path):
                stale.append(entry.path)
                continue
            repo = entry.repository
            self.user_state.apply(repo)
            if self.cache.is_directory_changed(entry):
                logger.debug("Directory changed since cached, refreshing %s", entry.path)
                repo = self._rebuild(repo)
                self.cache.update_one(repo)
            repo.is_favorite = self.favorites.is_favorite(repo.path)
            table[repo.path] = repo

        if stale:
            self.cache.cleanup(table.keys())

        with self._lock:
            self._repositories = table
        self._emit(CatalogEvent.UPDATED)
        return True

    def ensure_loaded(self, on_progress: ProgressCallback | None = None) -> ScanStatus:
        """Use the cache when it is valid, otherwise run a full scan."""
        if self.load_from_cache():
            return ScanStatus.COMPLETED
        return self.scan(on_progress=on_progress)

    # --- queries ---

    def list(
        self,
        criteria: FilterCriteria | None = None,
        sort: SortOption | None = None,
        search: str | None = None,
    ) -> list[Repository]:
        with self._lock:
            repos = list(self._repositories.values())
        repos = apply(repos, criteria)
        repos = search_repos(repos, search)
        return sort_repositories(repos, sort)

    def get(self, path: str) -> Repository:
        key = normalize_path(path)
        with self._lock:
            try:
                return self._repositories[key]
            except KeyError:
                raise RepositoryNotFoundError(key) from None

    def __len__(self) -> int:
        return len(self._repositories)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self._repositories

    def stats(self) -> CatalogStats:
        with self._lock:
            repos = list(self._repositories.values())
        return CatalogStats(
            total=len(repos),
            favorites=sum(1 for r in repos if r.is_favorite),
            archived=sum(1 for r in repos if r.is_archived),
            by_language=dict(Counter(r.metadata.language or "Unknown" for r in repos)),
            last_scan_at=self.last_scan_at,
        )

    # --- mutations ---

    def set_favorite(self, path: str, is_favorite: bool) -> Repository:
        repo = self.get(path)
        with self._lock:
            repo.is_favorite = is_favorite
            repo.updated_at = utc_now()
        self.favorites.set_favorite(repo.path, is_favorite)
        self._persist(repo)
        self._emit(CatalogEvent.FAVORITE_CHANGED, repo.path)
        return repo

    def toggle_favorite(self, path: str) -> bool:
        repo = self.get(path)
        self.set_favorite(repo.path, not repo.is_favorite)
        return repo.is_favorite

    def set_tags(self, path: str, tags: Iterable[str]) -> Repository:
        repo = self.get(path)
        with self._lock:
            repo.tags = sorted(set(tags))
            repo.updated_at = utc_now()
        self.user_state.save(repo)
        self._persist(repo)
        self._emit(CatalogEvent.UPDATED, repo.path)
        return repo

    def set_archived(self, path: str, is_archived: bool) -> Repository:
        repo = self.get(path)
        with self._lock:
            repo.is_archived = is_archived
            repo.updated_at = utc_now()
        self.user_state.save(repo)
        self._persist(repo)
        self._emit(CatalogEvent.UPDATED, repo.path)
        return repo

    def record_access(self, path: str) -> Repository:
        repo = self.get(path)
        with self._lock:
            repo.access_count += 1
            repo.last_accessed = utc_now()
        self.user_state.save(repo)
        self._persist(repo)
        return repo

    def refresh(self, path: str) -> Repository:
        """Re-extract git info and metadata for one repository."""
        repo = self.get(path)
        updated = self._rebuild(repo)
        with self._lock:
            self._repositories[updated.path] = updated
        self._persist(updated)
        self._emit(CatalogEvent.REPOSITORY_REFRESHED, updated.path)
        return updated

    def clear(self) -> None:
        with self._lock:
            self._repositories.clear()
        self._emit(CatalogEvent.CLEARED)

    def _rebuild(self, repo: Repository) -> Repository:
        fresh = self.scanner.build_repository(repo.path)
        fresh.display_name = repo.display_name
        fresh.tags = list(repo.tags)
        fresh.is_favorite = repo.is_favorite
        fresh.is_archived = repo.is_archived
        fresh.access_count = repo.access_count
        fresh.created_at = repo.created_at
        fresh.last_accessed = repo.last_accessed
        return fresh

    def _persist(self, repo: Repository) -> None:
        if self.cache is not None:
            self.cache.update_one(repo)
