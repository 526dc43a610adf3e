"""Catalog data model.

Plain dataclasses for repositories and the metadata attached to them.
Every type round-trips through ``to_dict`` / ``from_dict`` so the cache and
the CLI's ``--json`` output share one JSON shape.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_path(path: str | os.PathLike) -> str:
    """Absolute, normalized form of a path. Used as the repository identity."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(os.fspath(path))))


def format_datetime(value: datetime) -> str:
    return value.isoformat()


def parse_datetime(value: Any) -> datetime:
    if not value:
        return EPOCH
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class OwnerKind(str, Enum):
    SELF = "self"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Owner:
    """Who owns a repository: the local user, or a named account on a host."""

    kind: OwnerKind = OwnerKind.SELF
    name: str = ""
    url: str | None = None

    @classmethod
    def self_owned(cls) -> Owner:
        return cls(OwnerKind.SELF)

    @classmethod
    def external(cls, name: str, url: str | None = None) -> Owner:
        return cls(OwnerKind.EXTERNAL, name, url)

    @property
    def is_self(self) -> bool:
        return self.kind is OwnerKind.SELF

    @property
    def key(self) -> str:
        """Value used for owner filtering and grouping."""
        return "self" if self.is_self else self.name

    def to_dict(self) -> dict[str, Any] | str:
        if self.is_self:
            return "self"
        data: dict[str, Any] = {"name": self.name}
        if self.url:
            data["url"] = self.url
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Owner:
        if isinstance(data, dict) and data.get("name"):
            return cls.external(data["name"], data.get("url"))
        return cls.self_owned()


@dataclass
class AheadBehind:
    ahead: int = 0
    behind: int = 0
    # False when no upstream tracking branch could be resolved.
    has_upstream: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"ahead": self.ahead, "behind": self.behind, "has_upstream": self.has_upstream}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AheadBehind:
        data = data or {}
        return cls(
            ahead=int(data.get("ahead", 0)),
            behind=int(data.get("behind", 0)),
            has_upstream=bool(data.get("has_upstream", False)),
        )


@dataclass
class GitInfo:
    """Version-control state of a repository. All fields are best-effort."""

    remote_url: str | None = None
    current_branch: str = "HEAD"
    total_branches: int = 0
    last_commit_date: datetime = EPOCH
    has_uncommitted: bool = False
    ahead_behind: AheadBehind = field(default_factory=AheadBehind)
    is_fork: bool = False
    owner: Owner = field(default_factory=Owner.self_owned)

    @classmethod
    def minimal(cls) -> GitInfo:
        """Returned when git information could not be gathered at all."""
        return cls(current_branch="unknown")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "current_branch": self.current_branch,
            "total_branches": self.total_branches,
            "last_commit_date": format_datetime(self.last_commit_date),
            "has_uncommitted": self.has_uncommitted,
            "ahead_behind": self.ahead_behind.to_dict(),
            "is_fork": self.is_fork,
            "owner": self.owner.to_dict(),
        }
        if self.remote_url:
            data["remote_url"] = self.remote_url
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GitInfo:
        data = data or {}
        return cls(
            remote_url=data.get("remote_url"),
            current_branch=data.get("current_branch", "HEAD"),
            total_branches=int(data.get("total_branches", 0)),
            last_commit_date=parse_datetime(data.get("last_commit_date")),
            has_uncommitted=bool(data.get("has_uncommitted", False)),
            ahead_behind=AheadBehind.from_dict(data.get("ahead_behind")),
            is_fork=bool(data.get("is_fork", False)),
            owner=Owner.from_dict(data.get("owner")),
        )


DEPENDENCY_KINDS = ("runtime", "development", "peer", "optional")


@dataclass(frozen=True)
class Dependency:
    name: str
    version: str = ""
    kind: str = "runtime"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version, "kind": self.kind}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dependency:
        return cls(data["name"], data.get("version", ""), data.get("kind", "runtime"))


@dataclass
class ProjectSize:
    total_files: int = 0
    total_size: int = 0
    code_files: int = 0
    code_size: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ProjectSize:
        data = data or {}
        return cls(**{k: int(data.get(k, 0)) for k in ("total_files", "total_size", "code_files", "code_size")})


@dataclass
class ReadmeQuality:
    exists: bool = False
    has_description: bool = False
    has_installation: bool = False
    has_usage: bool = False
    score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ReadmeQuality:
        data = data or {}
        return cls(
            exists=bool(data.get("exists", False)),
            has_description=bool(data.get("has_description", False)),
            has_installation=bool(data.get("has_installation", False)),
            has_usage=bool(data.get("has_usage", False)),
            score=int(data.get("score", 0)),
        )


@dataclass
class RepositoryMetadata:
    """Project facts inferred from the files in a repository."""

    language: str = "Unknown"
    runtime: str | None = None
    databases: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    project_size: ProjectSize = field(default_factory=ProjectSize)
    readme_quality: ReadmeQuality = field(default_factory=ReadmeQuality)
    has_tests: bool = False
    has_cicd: bool = False
    license: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "language": self.language,
            "databases": list(self.databases),
            "dependencies": [d.to_dict() for d in self.dependencies],
            "project_size": self.project_size.to_dict(),
            "readme_quality": self.readme_quality.to_dict(),
            "has_tests": self.has_tests,
            "has_cicd": self.has_cicd,
        }
        if self.runtime:
            data["runtime"] = self.runtime
        if self.license:
            data["license"] = self.license
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RepositoryMetadata:
        data = data or {}
        return cls(
            language=data.get("language", "Unknown"),
            runtime=data.get("runtime"),
            databases=list(data.get("databases", [])),
            dependencies=[Dependency.from_dict(d) for d in data.get("dependencies", [])],
            project_size=ProjectSize.from_dict(data.get("project_size")),
            readme_quality=ReadmeQuality.from_dict(data.get("readme_quality")),
            has_tests=bool(data.get("has_tests", False)),
            has_cicd=bool(data.get("has_cicd", False)),
            license=data.get("license"),
        )


@dataclass
class Repository:
    """A discovered repository. ``path`` is the identity."""

    path: str
    name: str
    git_info: GitInfo = field(default_factory=GitInfo)
    metadata: RepositoryMetadata = field(default_factory=RepositoryMetadata)
    display_name: str | None = None
    tags: list[str] = field(default_factory=list)
    is_favorite: bool = False
    is_archived: bool = False
    access_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_accessed: datetime = field(default_factory=utc_now)
    last_scan_at: datetime = field(default_factory=utc_now)

    @property
    def id(self) -> str:
        return self.path.replace("\\", "/")

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "name": self.name,
            "git_info": self.git_info.to_dict(),
            "metadata": self.metadata.to_dict(),
            "tags": list(self.tags),
            "is_favorite": self.is_favorite,
            "is_archived": self.is_archived,
            "access_count": self.access_count,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "last_accessed": format_datetime(self.last_accessed),
            "last_scan_at": format_datetime(self.last_scan_at),
        }
        if self.display_name:
            data["display_name"] = self.display_name
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Repository:
        path = data["path"]
        return cls(
            path=path,
            name=data.get("name") or os.path.basename(path),
            git_info=GitInfo.from_dict(data.get("git_info")),
            metadata=RepositoryMetadata.from_dict(data.get("metadata")),
            display_name=data.get("display_name"),
            tags=list(data.get("tags", [])),
            is_favorite=bool(data.get("is_favorite", False)),
            is_archived=bool(data.get("is_archived", False)),
            access_count=int(data.get("access_count", 0)),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            last_accessed=parse_datetime(data.get("last_accessed")),
            last_scan_at=parse_datetime(data.get("last_scan_at")),
        )
