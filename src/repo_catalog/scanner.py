"""Repository discovery.

Walks configured roots depth-first, stops at every repository root it
finds, then builds a :class:`Repository` for each one on a bounded
worker pool.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from .analyzer import ProjectAnalyzer
from .config import DEFAULT_MAX_CONCURRENT_SCANS
from .git import GitMetadataExtractor, is_git_repository
from .models import GitInfo, Repository, RepositoryMetadata, normalize_path, utc_now

logger = logging.getLogger(__name__)

# message, percent complete (None for advisory messages)
ProgressCallback = Callable[[str, "int | None"], None]

# Share of the progress bar used for discovery; extraction fills the rest.
DISCOVERY_PERCENT = 40
EXTRACTION_PERCENT = 90

# Where checkouts usually live, relative to the home directory.
COMMON_ROOT_DIRS = (
    "Documents/GitHub",
    "Documents/github",
    "Projects",
    "workspace",
    "dev",
    "code",
    "source",
    "repos",
)


class ScanCancelled(Exception):
    """Raised when a scan is cancelled. The partial result is discarded."""


class CancelToken:
    """Cooperative cancellation flag shared between a caller and a scan."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled()


class MetadataExtractor(Protocol):
    def extract(self, path: str) -> GitInfo: ...


class MetadataAnalyzer(Protocol):
    def analyze(self, path: str) -> RepositoryMetadata: ...


def is_excluded(path: str, exclude_paths: Iterable[str]) -> bool:
    """True if a normalized exclude pattern is a substring or prefix of ``path``."""
    normalized = os.path.normpath(path)
    for pattern in exclude_paths:
        if not pattern:
            continue
        exclude = os.path.normpath(os.path.expanduser(pattern))
        if exclude in normalized or normalized.startswith(exclude):
            return True
    return False


def _noop_progress(message: str, percent: int | None = None) -> None:
    pass


class DiscoveryScanner:
    """Finds repositories under root paths and extracts their metadata."""

    def __init__(
        self,
        extractor: MetadataExtractor | None = None,
        analyzer: MetadataAnalyzer | None = None,
        max_workers: int = DEFAULT_MAX_CONCURRENT_SCANS,
    ):
        self.extractor = extractor or GitMetadataExtractor()
        self.analyzer = analyzer or ProjectAnalyzer()
        self.max_workers = max(1, max_workers)

    def scan(
        self,
        root_paths: Iterable[str],
        max_depth: int,
        include_hidden: bool = False,
        exclude_paths: Iterable[str] = (),
        cancel_token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Repository]:
        """Scan ``root_paths``. Returns repositories keyed by path.

        Raises :class:`ScanCancelled` if ``cancel_token`` fires.
        """
        token = cancel_token or CancelToken()
        progress = on_progress or _noop_progress
        roots = list(root_paths)
        excludes = list(exclude_paths)

        found = self.discover(roots, max_depth, include_hidden, excludes, token, progress)

        progress(f"Analyzing {len(found)} repositories...", DISCOVERY_PERCENT)
        return self._build_all(found, token, progress)

    def discover(
        self,
        root_paths: list[str],
        max_depth: int,
        include_hidden: bool,
        exclude_paths: list[str],
        token: CancelToken,
        progress: ProgressCallback,
    ) -> list[str]:
        """Repository root paths under ``root_paths``, in walk order, deduplicated."""
        found: dict[str, None] = {}
        total = len(root_paths) or 1

        for index, root in enumerate(root_paths):
            token.raise_if_cancelled()
            root_path = normalize_path(root)
            progress(f"Scanning folder: {os.path.basename(root_path) or root_path}",
                     index * DISCOVERY_PERCENT // total)

            if not os.path.isdir(root_path) or not os.access(root_path, os.R_OK | os.X_OK):
                logger.warning("Path does not exist or is not accessible: %s", root_path)
                progress(f"Skipping inaccessible path: {root_path}", None)
                continue

            before = len(found)
            self._walk(root_path, 0, max_depth, include_hidden, exclude_paths, found, token)
            logger.info("Found %d repositories in %s", len(found) - before, root_path)
            progress(f"Found {len(found) - before} repos in {os.path.basename(root_path)}",
                     (index + 1) * DISCOVERY_PERCENT // total)

        return list(found)

    def _walk(
        self,
        path: str,
        depth: int,
        max_depth: int,
        include_hidden: bool,
        exclude_paths: list[str],
        found: dict[str, None],
        token: CancelToken,
    ) -> None:
        token.raise_if_cancelled()
        if depth > max_depth or is_excluded(path, exclude_paths):
            return

        if is_git_repository(path):
            found.setdefault(path, None)
            # Repositories are not scanned internally.
            return

        if depth >= max_depth:
            return

        try:
            with os.scandir(path) as it:
                subdirs = sorted(
                    entry.name for entry in it
                    if entry.is_dir(follow_symlinks=False)
                )
        except OSError as e:
            logger.debug("Cannot read directory %s: %s", path, e)
            return

        for name in subdirs:
            if not include_hidden and name.startswith("."):
                continue
            self._walk(os.path.join(path, name), depth + 1, max_depth,
                       include_hidden, exclude_paths, found, token)

    def build_repository(self, path: str) -> Repository:
        """Extract git info and project metadata for one repository root."""
        path = normalize_path(path)
        now = utc_now()
        return Repository(
            path=path,
            name=os.path.basename(path),
            git_info=self.extractor.extract(path),
            metadata=self.analyzer.analyze(path),
            created_at=now,
            updated_at=now,
            last_accessed=now,
            last_scan_at=now,
        )

    def _build_all(
        self,
        paths: list[str],
        token: CancelToken,
        progress: ProgressCallback,
    ) -> dict[str, Repository]:
        results: dict[str, Repository] = {}
        if not paths:
            return results

        total = len(paths)
        span = EXTRACTION_PERCENT - DISCOVERY_PERCENT
        pool = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            pending = {pool.submit(self.build_repository, p): p for p in paths}
            while pending:
                token.raise_if_cancelled()
                done, _ = wait(pending, timeout=0.2, return_when=FIRST_COMPLETED)
                for future in done:
                    path = pending.pop(future)
                    try:
                        repo = future.result()
                    except Exception:
                        logger.warning("Failed to build repository for %s", path, exc_info=True)
                        continue
                    results[repo.path] = repo
                    progress(f"Analyzed {repo.name}", DISCOVERY_PERCENT + len(results) * span // total)
            token.raise_if_cancelled()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        # Discovery order, independent of completion order.
        return {p: results[p] for p in paths if p in results}


@dataclass
class RootCandidate:
    """A folder that may be worth scanning, with what sits directly inside it."""

    path: str
    repository_count: int = 0
    folder_count: int = 0

    @property
    def has_repositories(self) -> bool:
        return self.repository_count > 0


def inspect_root(path: str | os.PathLike) -> RootCandidate:
    """Count the direct subdirectories of ``path`` and how many are repositories."""
    candidate = RootCandidate(normalize_path(path))
    try:
        with os.scandir(candidate.path) as it:
            for entry in it:
                if not entry.is_dir(follow_symlinks=False):
                    continue
                candidate.folder_count += 1
                if is_git_repository(entry.path):
                    candidate.repository_count += 1
    except OSError as e:
        logger.debug("Cannot inspect %s: %s", candidate.path, e)
    return candidate


def detect_roots(home: str | None = None, candidates: Iterable[str] = COMMON_ROOT_DIRS) -> list[RootCandidate]:
    """Existing common project folders under ``home``, most promising first.

    Folders holding repositories come before those that don't; within each
    group, folders with more entries come first.
    """
    home = home or os.path.expanduser("~")
    found: list[RootCandidate] = []
    seen: set[str] = set()
    for relative in candidates:
        path = normalize_path(os.path.join(home, relative))
        # Documents/GitHub and Documents/github are one folder on case-insensitive filesystems.
        real = os.path.realpath(path)
        if real in seen or not os.path.isdir(path):
            continue
        seen.add(real)
        found.append(inspect_root(path))
    return sorted(found, key=lambda c: (not c.has_repositories, -(c.repository_count + c.folder_count)))
