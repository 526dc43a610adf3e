"""Filter, search, sort and group repositories.

Everything here is synchronous and side-effect free: functions take
repositories and criteria and return new lists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

from .models import Repository, format_datetime, parse_datetime


class GitState(str, Enum):
    CLEAN = "clean"
    MODIFIED = "modified"
    BEHIND = "behind"
    AHEAD = "ahead"
    # Reserved: git_state() never reports it, so filtering on it matches nothing.
    CONFLICT = "conflict"


OPERATORS = ("equals", "contains", "startsWith", "endsWith", "regex", "greaterThan", "lessThan")


@dataclass
class DateRange:
    start: datetime
    end: datetime


@dataclass
class SizeRange:
    min_files: int = 0
    max_files: int | None = None


@dataclass
class CustomCondition:
    field: str
    operator: str
    value: Any
    case_sensitive: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "case_sensitive": self.case_sensitive,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomCondition:
        return cls(
            field=data["field"],
            operator=data["operator"],
            value=data.get("value"),
            case_sensitive=bool(data.get("case_sensitive", True)),
        )


@dataclass
class FilterCriteria:
    """Typed filter. Empty lists and None fields impose no constraint."""

    languages: list[str] = field(default_factory=list)
    owners: list[str] = field(default_factory=list)
    git_states: list[GitState] = field(default_factory=list)
    date_range: DateRange | None = None
    size_range: SizeRange | None = None
    tags: list[str] = field(default_factory=list)
    favorites_only: bool = False
    exclude_archived: bool = False
    has_tests: bool | None = None
    has_cicd: bool | None = None
    custom_conditions: list[CustomCondition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "languages": list(self.languages),
            "owners": list(self.owners),
            "git_states": [GitState(s).value for s in self.git_states],
            "tags": list(self.tags),
            "favorites_only": self.favorites_only,
            "exclude_archived": self.exclude_archived,
            "custom_conditions": [c.to_dict() for c in self.custom_conditions],
        }
        if self.date_range:
            data["date_range"] = {
                "start": format_datetime(self.date_range.start),
                "end": format_datetime(self.date_range.end),
            }
        if self.size_range:
            data["size_range"] = {
                "min_files": self.size_range.min_files,
                "max_files": self.size_range.max_files,
            }
        if self.has_tests is not None:
            data["has_tests"] = self.has_tests
        if self.has_cicd is not None:
            data["has_cicd"] = self.has_cicd
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FilterCriteria:
        data = data or {}
        date_range = None
        if data.get("date_range"):
            date_range = DateRange(
                parse_datetime(data["date_range"]["start"]),
                parse_datetime(data["date_range"]["end"]),
            )
        size_range = None
        if data.get("size_range"):
            size_range = SizeRange(
                int(data["size_range"].get("min_files") or 0),
                data["size_range"].get("max_files"),
            )
        return cls(
            languages=list(data.get("languages", [])),
            owners=list(data.get("owners", [])),
            git_states=[GitState(s) for s in data.get("git_states", [])],
            date_range=date_range,
            size_range=size_range,
            tags=list(data.get("tags", [])),
            favorites_only=bool(data.get("favorites_only", False)),
            exclude_archived=bool(data.get("exclude_archived", False)),
            has_tests=data.get("has_tests"),
            has_cicd=data.get("has_cicd"),
            custom_conditions=[CustomCondition.from_dict(c) for c in data.get("custom_conditions", [])],
        )


def git_state(repo: Repository) -> GitState:
    """Single git state, by precedence: modified, behind, ahead, clean."""
    info = repo.git_info
    if info.has_uncommitted:
        return GitState.MODIFIED
    if info.ahead_behind.behind > 0:
        return GitState.BEHIND
    if info.ahead_behind.ahead > 0:
        return GitState.AHEAD
    return GitState.CLEAN


FIELD_RESOLVERS: dict[str, Callable[[Repository], Any]] = {
    "name": lambda r: r.name,
    "language": lambda r: r.metadata.language,
    "accessCount": lambda r: r.access_count,
    "totalFiles": lambda r: r.metadata.project_size.total_files,
    "hasTests": lambda r: r.metadata.has_tests,
    "hasCicd": lambda r: r.metadata.has_cicd,
}

BOOLEAN_FIELDS = frozenset({"hasTests", "hasCicd"})
NUMERIC_FIELDS = frozenset({"accessCount", "totalFiles"})

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> float | None:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def evaluate_condition(repo: Repository, condition: CustomCondition) -> bool:
    """Apply one custom condition. Unknown fields or operators never match."""
    resolver = FIELD_RESOLVERS.get(condition.field)
    value = resolver(repo) if resolver else _MISSING
    if value is _MISSING or value is None:
        return False

    op = condition.operator
    expected = condition.value

    if op in ("contains", "startsWith", "endsWith", "regex"):
        if not isinstance(value, str):
            return False
        needle = "" if expected is None else str(expected)
        if op == "regex":
            flags = 0 if condition.case_sensitive else re.IGNORECASE
            try:
                return re.search(needle, value, flags) is not None
            except re.error:
                return False
        if not condition.case_sensitive:
            value, needle = value.lower(), needle.lower()
        if op == "contains":
            return needle in value
        if op == "startsWith":
            return value.startswith(needle)
        return value.endswith(needle)

    if op in ("greaterThan", "lessThan"):
        if not _is_number(value):
            return False
        threshold = _as_number(expected)
        if threshold is None:
            return False
        return value > threshold if op == "greaterThan" else value < threshold

    if op == "equals":
        if isinstance(value, str) and isinstance(expected, str) and not condition.case_sensitive:
            return value.lower() == expected.lower()
        if isinstance(value, bool) or isinstance(expected, bool):
            return isinstance(value, bool) and isinstance(expected, bool) and value == expected
        return value == expected

    return False


def matches(repo: Repository, criteria: FilterCriteria) -> bool:
    """True if ``repo`` satisfies every constraint in ``criteria``."""
    if criteria.languages and repo.metadata.language not in criteria.languages:
        return False

    if criteria.owners and repo.git_info.owner.key not in criteria.owners:
        return False

    if criteria.favorites_only and not repo.is_favorite:
        return False

    if criteria.exclude_archived and repo.is_archived:
        return False

    if criteria.tags and not any(tag in repo.tags for tag in criteria.tags):
        return False

    if criteria.git_states:
        allowed = {GitState(s) for s in criteria.git_states}
        if git_state(repo) not in allowed:
            return False

    if criteria.date_range:
        if not (criteria.date_range.start <= repo.last_accessed <= criteria.date_range.end):
            return False

    if criteria.size_range:
        total = repo.metadata.project_size.total_files
        if total < criteria.size_range.min_files:
            return False
        if criteria.size_range.max_files is not None and total > criteria.size_range.max_files:
            return False

    if criteria.has_tests is not None and repo.metadata.has_tests != criteria.has_tests:
        return False

    if criteria.has_cicd is not None and repo.metadata.has_cicd != criteria.has_cicd:
        return False

    return all(evaluate_condition(repo, c) for c in criteria.custom_conditions)


def apply(repos: Iterable[Repository], criteria: FilterCriteria | None) -> list[Repository]:
    """Order-preserving filter."""
    if criteria is None:
        return list(repos)
    return [r for r in repos if matches(r, criteria)]


def search(repos: Iterable[Repository], term: str | None) -> list[Repository]:
    """Case-insensitive substring match on name and display name."""
    if not term:
        return list(repos)
    needle = term.lower()
    return [r for r in repos if needle in r.name.lower() or needle in (r.display_name or "").lower()]


# --- Sorting ---

SORT_KEYS: dict[str, Callable[[Repository], Any]] = {
    "name": lambda r: r.name.lower(),
    "language": lambda r: (r.metadata.language or "").lower(),
    "last_commit": lambda r: r.git_info.last_commit_date,
    "last_accessed": lambda r: r.last_accessed,
    "access_count": lambda r: r.access_count,
    "created_at": lambda r: r.created_at,
    "updated_at": lambda r: r.updated_at,
    "size": lambda r: r.metadata.project_size.total_files,
    "favorite": lambda r: r.is_favorite,
}


@dataclass
class SortOption:
    field: str = "name"
    descending: bool = False


def sort_repositories(repos: Iterable[Repository], sort: SortOption | None) -> list[Repository]:
    items = list(repos)
    if sort is None:
        return items
    key = SORT_KEYS.get(sort.field)
    if key is None:
        raise ValueError(f"Unknown sort field: {sort.field}")
    return sorted(items, key=key, reverse=sort.descending)


# --- Grouping ---

GROUP_KEYS: dict[str, Callable[[Repository], str]] = {
    "language": lambda r: r.metadata.language or "Unknown",
    "owner": lambda r: r.git_info.owner.key,
    "favorite": lambda r: "Favorites" if r.is_favorite else "Others",
}


def group_by(repos: Iterable[Repository], key: str) -> dict[str, list[Repository]]:
    """Group repositories, keeping input order inside each group."""
    items = list(repos)
    if key == "none":
        return {"All": items}
    fn = GROUP_KEYS.get(key)
    if fn is None:
        raise ValueError(f"Unknown group key: {key}")
    groups: dict[str, list[Repository]] = {}
    for repo in items:
        groups.setdefault(fn(repo), []).append(repo)
    return groups
