"""Tests for filtering, searching, sorting and grouping."""

from datetime import datetime, timedelta, timezone

import pytest

from repo_catalog.filters import (
    CustomCondition,
    DateRange,
    FilterCriteria,
    GitState,
    SizeRange,
    SortOption,
    apply,
    evaluate_condition,
    git_state,
    group_by,
    search,
    sort_repositories,
)
from repo_catalog.models import (
    AheadBehind,
    GitInfo,
    Owner,
    ProjectSize,
    Repository,
    RepositoryMetadata,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_repo(name, language="Go", favorite=False, dirty=False, ahead=0, behind=0,
              files=10, owner=None, tags=(), archived=False, accessed=NOW, access_count=0,
              has_tests=False):
    return Repository(
        path=f"/code/{name}",
        name=name,
        git_info=GitInfo(
            has_uncommitted=dirty,
            ahead_behind=AheadBehind(ahead, behind, has_upstream=bool(ahead or behind)),
            owner=owner or Owner.self_owned(),
        ),
        metadata=RepositoryMetadata(
            language=language,
            project_size=ProjectSize(total_files=files),
            has_tests=has_tests,
        ),
        is_favorite=favorite,
        is_archived=archived,
        tags=list(tags),
        last_accessed=accessed,
        access_count=access_count,
    )


@pytest.fixture
def repos():
    return [
        make_repo("api", "Go", favorite=True, files=120, has_tests=True),
        make_repo("cli", "Go", favorite=False, dirty=True, files=8),
        make_repo("engine", "Rust", favorite=True, behind=2, files=300,
                  owner=Owner.external("rust-lang"), tags=["oss"]),
        make_repo("notes", "Markdown", archived=True, ahead=1, files=3,
                  accessed=NOW - timedelta(days=30), access_count=7),
    ]


class TestGitState:
    def test_precedence(self):
        assert git_state(make_repo("a", dirty=True, behind=3, ahead=1)) is GitState.MODIFIED
        assert git_state(make_repo("a", behind=3, ahead=1)) is GitState.BEHIND
        assert git_state(make_repo("a", ahead=1)) is GitState.AHEAD
        assert git_state(make_repo("a")) is GitState.CLEAN

    def test_dirty_and_behind_matches_modified_only(self):
        repo = make_repo("a", dirty=True, behind=1)
        assert apply([repo], FilterCriteria(git_states=[GitState.MODIFIED])) == [repo]
        assert apply([repo], FilterCriteria(git_states=[GitState.BEHIND])) == []


class TestApply:
    def test_empty_criteria_is_identity(self, repos):
        assert apply(repos, FilterCriteria()) == repos
        assert apply(repos, None) == repos

    def test_language_and_favorites(self, repos):
        result = apply(repos, FilterCriteria(languages=["Go"], favorites_only=True))
        assert [r.name for r in result] == ["api"]

    def test_order_preserved(self, repos):
        result = apply(repos, FilterCriteria(languages=["Rust", "Go"]))
        assert [r.name for r in result] == ["api", "cli", "engine"]

    def test_owner(self, repos):
        assert [r.name for r in apply(repos, FilterCriteria(owners=["rust-lang"]))] == ["engine"]
        assert len(apply(repos, FilterCriteria(owners=["self"]))) == 3

    def test_tags_any_of(self, repos):
        assert [r.name for r in apply(repos, FilterCriteria(tags=["oss", "work"]))] == ["engine"]

    def test_exclude_archived(self, repos):
        assert "notes" not in [r.name for r in apply(repos, FilterCriteria(exclude_archived=True))]

    def test_size_range_inclusive(self, repos):
        result = apply(repos, FilterCriteria(size_range=SizeRange(min_files=8, max_files=120)))
        assert [r.name for r in result] == ["api", "cli"]

    def test_date_range_on_last_accessed(self, repos):
        window = DateRange(NOW - timedelta(days=1), NOW)
        assert [r.name for r in apply(repos, FilterCriteria(date_range=window))] == ["api", "cli", "engine"]

    def test_has_tests(self, repos):
        assert [r.name for r in apply(repos, FilterCriteria(has_tests=True))] == ["api"]
        assert len(apply(repos, FilterCriteria(has_tests=False))) == 3

    def test_git_states_allow_list(self, repos):
        result = apply(repos, FilterCriteria(git_states=[GitState.BEHIND, GitState.AHEAD]))
        assert [r.name for r in result] == ["engine", "notes"]


class TestCustomConditions:
    @pytest.mark.parametrize("condition,expected", [
        (CustomCondition("name", "equals", "api"), True),
        (CustomCondition("name", "equals", "API"), False),
        (CustomCondition("name", "equals", "API", case_sensitive=False), True),
        (CustomCondition("name", "contains", "p"), True),
        (CustomCondition("name", "startsWith", "ap"), True),
        (CustomCondition("name", "endsWith", "pi"), True),
        (CustomCondition("name", "regex", "^a.i$"), True),
        (CustomCondition("name", "regex", "[unclosed"), False),
        (CustomCondition("totalFiles", "greaterThan", 100), True),
        (CustomCondition("totalFiles", "lessThan", "100"), False),
        (CustomCondition("totalFiles", "greaterThan", "many"), False),
        (CustomCondition("hasTests", "equals", True), True),
        (CustomCondition("hasTests", "equals", 1), False),
        (CustomCondition("accessCount", "contains", "0"), False),
        (CustomCondition("name", "greaterThan", 1), False),
        (CustomCondition("nonexistent", "equals", "api"), False),
        (CustomCondition("name", "bogus", "api"), False),
    ])
    def test_evaluate(self, repos, condition, expected):
        assert evaluate_condition(repos[0], condition) is expected

    def test_conditions_are_conjunctive(self, repos):
        criteria = FilterCriteria(custom_conditions=[
            CustomCondition("language", "equals", "Go"),
            CustomCondition("totalFiles", "lessThan", 50),
        ])
        assert [r.name for r in apply(repos, criteria)] == ["cli"]


class TestCriteriaSerialization:
    def test_from_dict_defaults(self):
        criteria = FilterCriteria.from_dict(None)
        assert criteria == FilterCriteria()

    def test_round_trip_keeps_enums_and_ranges(self):
        criteria = FilterCriteria(
            languages=["Go"],
            git_states=[GitState.MODIFIED],
            size_range=SizeRange(1, 5),
            date_range=DateRange(NOW - timedelta(days=1), NOW),
            custom_conditions=[CustomCondition("name", "contains", "x", case_sensitive=False)],
            has_cicd=False,
        )
        assert FilterCriteria.from_dict(criteria.to_dict()) == criteria


class TestSearchSortGroup:
    def test_search_case_insensitive(self, repos):
        assert [r.name for r in search(repos, "EN")] == ["engine"]
        assert search(repos, "") == repos

    def test_search_display_name(self, repos):
        repos[1].display_name = "Command Line"
        assert [r.name for r in search(repos, "command")] == ["cli"]

    def test_sort_by_size_descending(self, repos):
        result = sort_repositories(repos, SortOption("size", descending=True))
        assert [r.name for r in result] == ["engine", "api", "cli", "notes"]

    def test_sort_by_language_is_stable(self, repos):
        result = sort_repositories(repos, SortOption("language"))
        assert [r.name for r in result] == ["api", "cli", "notes", "engine"]

    def test_unknown_sort_field(self, repos):
        with pytest.raises(ValueError):
            sort_repositories(repos, SortOption("stars"))

    def test_group_by_language(self, repos):
        groups = group_by(repos, "language")
        assert list(groups) == ["Go", "Rust", "Markdown"]
        assert [r.name for r in groups["Go"]] == ["api", "cli"]

    def test_group_by_favorite_and_none(self, repos):
        assert [r.name for r in group_by(repos, "favorite")["Favorites"]] == ["api", "engine"]
        assert group_by(repos, "none") == {"All": repos}
