"""Scan and cache configuration handed to the catalog."""

from __future__ import annotations

from dataclasses import dataclass, field

from .models import normalize_path

DEFAULT_SCAN_DEPTH = 3
DEFAULT_MAX_CONCURRENT_SCANS = 5
DEFAULT_CACHE_MAX_AGE = 24 * 60 * 60  # seconds
DEFAULT_EXCLUDE_PATHS = ("node_modules",)
MIN_SENSIBLE_CACHE_AGE = 60


@dataclass
class ConfigValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class CatalogConfig:
    """Where to look for repositories and how long a cached scan stays usable."""

    root_paths: list[str] = field(default_factory=list)
    exclude_paths: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATHS))
    scan_depth: int = DEFAULT_SCAN_DEPTH
    include_hidden: bool = False
    max_concurrent_scans: int = DEFAULT_MAX_CONCURRENT_SCANS
    cache_max_age_seconds: int = DEFAULT_CACHE_MAX_AGE

    def normalized_roots(self) -> list[str]:
        """Normalized root paths, duplicates removed, order preserved."""
        seen: dict[str, None] = {}
        for root in self.root_paths:
            if root:
                seen.setdefault(normalize_path(root), None)
        return list(seen)

    def validate(self) -> ConfigValidation:
        result = ConfigValidation()
        if not self.root_paths:
            result.warnings.append("No root paths configured for scanning")
        if self.scan_depth < 1:
            result.errors.append("Scan depth must be at least 1")
        if self.max_concurrent_scans < 1:
            result.errors.append("Max concurrent scans must be at least 1")
        if self.cache_max_age_seconds < MIN_SENSIBLE_CACHE_AGE:
            result.warnings.append("Cache max age is very low, scans will rarely be reused")
        return result
