"""Named, persisted filter profiles.

A profile is created inactive. Applying one makes it the only active
profile; clearing or deleting the active one leaves none active.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from . import __version__
from .filters import FilterCriteria, apply
from .models import EPOCH, Repository, format_datetime, parse_datetime, utc_now
from .store import KeyValueStore

logger = logging.getLogger(__name__)

PROFILES_KEY = "filterProfiles"
EXPORT_VERSION = "1.0.0"


class ProfileNotFoundError(KeyError):
    """No filter profile with the given id."""


@dataclass
class FilterProfile:
    id: str
    name: str
    filters: FilterCriteria = field(default_factory=FilterCriteria)
    description: str | None = None
    icon: str | None = None
    color: str | None = None
    is_active: bool = False
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
            "filters": self.filters.to_dict(),
            "is_active": self.is_active,
            "tags": list(self.tags),
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilterProfile:
        return cls(
            id=data["id"],
            name=data["name"],
            filters=FilterCriteria.from_dict(data.get("filters")),
            description=data.get("description"),
            icon=data.get("icon"),
            color=data.get("color"),
            is_active=bool(data.get("is_active", False)),
            tags=list(data.get("tags", [])),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class ProfileStats:
    total_repositories: int
    language_distribution: dict[str, int]
    last_activity: datetime
    matched_paths: list[str]


class FilterProfileManager:
    """CRUD and activation for filter profiles, stored in a key-value store."""

    def __init__(self, store: KeyValueStore, key: str = PROFILES_KEY):
        self.store = store
        self.key = key
        self._profiles: dict[str, FilterProfile] = {}
        self._active_id: str | None = None
        self._load()

    # --- queries ---

    def list(self) -> list[FilterProfile]:
        return list(self._profiles.values())

    def get(self, profile_id: str) -> FilterProfile:
        try:
            return self._profiles[profile_id]
        except KeyError:
            raise ProfileNotFoundError(profile_id) from None

    def find(self, id_or_name: str) -> FilterProfile:
        """Look a profile up by id, falling back to an exact name match."""
        if id_or_name in self._profiles:
            return self._profiles[id_or_name]
        for profile in self._profiles.values():
            if profile.name == id_or_name:
                return profile
        raise ProfileNotFoundError(id_or_name)

    @property
    def active(self) -> FilterProfile | None:
        if self._active_id is None:
            return None
        return self._profiles.get(self._active_id)

    # --- mutations ---

    def create(
        self,
        name: str,
        filters: FilterCriteria,
        description: str | None = None,
        icon: str | None = None,
        color: str | None = None,
        tags: Iterable[str] = (),
    ) -> FilterProfile:
        profile = FilterProfile(
            id=f"profile_{uuid.uuid4().hex[:12]}",
            name=name,
            filters=filters,
            description=description,
            icon=icon,
            color=color,
            tags=list(tags),
        )
        self._profiles[profile.id] = profile
        self._save()
        return profile

    def update(self, profile_id: str, **changes: Any) -> FilterProfile:
        profile = self.get(profile_id)
        for attr in ("name", "filters", "description", "icon", "color", "tags"):
            if attr in changes:
                setattr(profile, attr, changes[attr])
        profile.updated_at = utc_now()
        self._save()
        return profile

    def delete(self, profile_id: str) -> None:
        self.get(profile_id)
        del self._profiles[profile_id]
        if self._active_id == profile_id:
            self._active_id = None
        self._save()

    def apply(self, profile_id: str, repositories: Iterable[Repository]) -> list[Repository]:
        """Activate a profile and return the repositories it matches."""
        profile = self.get(profile_id)
        previous = self.active
        if previous is not None:
            previous.is_active = False
        profile.is_active = True
        self._active_id = profile.id
        self._save()
        return apply(repositories, profile.filters)

    def clear_active(self) -> None:
        profile = self.active
        if profile is None:
            return
        profile.is_active = False
        self._active_id = None
        self._save()

    # --- sharing ---

    def export(self, profile_id: str) -> dict[str, Any]:
        profile = self.get(profile_id)
        return {
            "version": EXPORT_VERSION,
            "profile": {
                "name": profile.name,
                "description": profile.description,
                "icon": profile.icon,
                "color": profile.color,
                "filters": profile.filters.to_dict(),
                "tags": list(profile.tags),
            },
            "metadata": {
                "exported_by": "repo-catalog",
                "exported_at": format_datetime(utc_now()),
                "compatibility_version": __version__,
            },
        }

    def import_profile(self, data: dict[str, Any]) -> FilterProfile:
        if data.get("version") != EXPORT_VERSION:
            raise ValueError(f"Unsupported profile export version: {data.get('version')!r}")
        body = data.get("profile") or {}
        if not body.get("name"):
            raise ValueError("Profile export has no name")
        return self.create(
            body["name"],
            FilterCriteria.from_dict(body.get("filters")),
            description=body.get("description"),
            icon=body.get("icon"),
            color=body.get("color"),
            tags=body.get("tags") or [],
        )

    def statistics(self, profile_id: str, repositories: Iterable[Repository]) -> ProfileStats:
        profile = self.get(profile_id)
        matched = apply(repositories, profile.filters)
        return ProfileStats(
            total_repositories=len(matched),
            language_distribution=dict(Counter(r.metadata.language for r in matched)),
            last_activity=max((r.last_accessed for r in matched), default=EPOCH),
            matched_paths=[r.path for r in matched],
        )

    # --- persistence ---

    def _load(self) -> None:
        data = self.store.get(self.key) or {}
        try:
            profiles = [FilterProfile.from_dict(p) for p in (data.get("profiles") or {}).values()]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to load filter profiles: %s", e)
            return
        self._profiles = {p.id: p for p in profiles}
        active = data.get("active_profile_id")
        self._active_id = active if active in self._profiles else None
        # A single active flag, whatever was stored.
        for profile in self._profiles.values():
            profile.is_active = profile.id == self._active_id

    def _save(self) -> None:
        self.store.set(self.key, {
            "profiles": {pid: p.to_dict() for pid, p in self._profiles.items()},
            "active_profile_id": self._active_id,
            "last_modified": format_datetime(utc_now()),
        })
