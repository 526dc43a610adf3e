"""Tests for git metadata extraction."""

import subprocess
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from repo_catalog.git import (
    GitMetadataExtractor,
    is_git_repository,
    parse_ahead_behind,
    parse_branches,
    parse_commit_date,
    parse_owner,
)
from repo_catalog.models import EPOCH, OwnerKind


def fake_git(responses):
    """Build a subprocess.run replacement answering from ``responses``.

    Keys are the git argument strings; values are stdout, or None to fail.
    """
    def run(cmd, cwd=None, capture_output=True, text=True, timeout=None):
        key = " ".join(cmd[1:])
        stdout = responses.get(key)
        if stdout is None:
            return subprocess.CompletedProcess(cmd, 128, "", "fatal: not available")
        return subprocess.CompletedProcess(cmd, 0, stdout, "")
    return run


HEALTHY = {
    "remote get-url origin": "git@github.com:octocat/hello.git\n",
    "branch --show-current": "main\n",
    "branch -a": "* main\n  feature\n  remotes/origin/HEAD -> origin/main\n  remotes/origin/main\n",
    "log -1 --format=%ci": "2024-03-01 12:34:56 +0100\n",
    "status --porcelain": "",
    "rev-list --count --left-right HEAD...@{upstream}": "2\t1\n",
    "remote": "origin\nupstream\n",
}


class TestIsGitRepository:
    def test_git_directory(self, tmp_path):
        (tmp_path / ".git").mkdir()
        assert is_git_repository(tmp_path)

    def test_gitdir_pointer_file(self, tmp_path):
        (tmp_path / ".git").write_text("gitdir: /elsewhere/.git/worktrees/x\n")
        assert is_git_repository(tmp_path)

    def test_other_file_is_not_a_repo(self, tmp_path):
        (tmp_path / ".git").write_text("junk")
        assert not is_git_repository(tmp_path)

    def test_plain_directory(self, tmp_path):
        assert not is_git_repository(tmp_path)


class TestParsers:
    @pytest.mark.parametrize("url,owner", [
        ("https://github.com/octocat/hello.git", "octocat"),
        ("git@github.com:octocat/hello.git", "octocat"),
        ("https://gitlab.com/group/project", "group"),
        ("git@bitbucket.org:team/repo.git", "team"),
    ])
    def test_parse_owner_external(self, url, owner):
        parsed = parse_owner(url)
        assert parsed.kind is OwnerKind.EXTERNAL
        assert parsed.name == owner
        assert parsed.url.endswith("/" + owner)

    @pytest.mark.parametrize("url", [None, "", "https://git.example.com/me/repo.git", "/srv/git/repo"])
    def test_parse_owner_self(self, url):
        assert parse_owner(url).is_self

    def test_parse_branches_skips_head_pointer(self):
        assert parse_branches(HEALTHY["branch -a"]) == ["main", "feature", "remotes/origin/main"]

    def test_parse_commit_date(self):
        parsed = parse_commit_date("2024-03-01 12:34:56 +0100")
        assert parsed == datetime(2024, 3, 1, 12, 34, 56, tzinfo=timezone(timedelta(hours=1)))

    def test_parse_commit_date_failure(self):
        assert parse_commit_date(None) == EPOCH
        assert parse_commit_date("yesterday") == EPOCH

    def test_parse_ahead_behind(self):
        counts = parse_ahead_behind("3\t4")
        assert (counts.ahead, counts.behind, counts.has_upstream) == (3, 4, True)

    def test_parse_ahead_behind_without_upstream(self):
        counts = parse_ahead_behind(None)
        assert (counts.ahead, counts.behind, counts.has_upstream) == (0, 0, False)


class TestExtract:
    def test_healthy_repository(self, tmp_path):
        with patch("repo_catalog.git.subprocess.run", side_effect=fake_git(HEALTHY)):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.remote_url == "git@github.com:octocat/hello.git"
        assert info.current_branch == "main"
        assert info.total_branches == 3
        assert info.last_commit_date.year == 2024
        assert info.has_uncommitted is False
        assert (info.ahead_behind.ahead, info.ahead_behind.behind) == (2, 1)
        assert info.is_fork is True
        assert info.owner.name == "octocat"

    def test_dirty_tree_without_upstream(self, tmp_path):
        responses = dict(HEALTHY)
        responses["status --porcelain"] = " M src/app.py\n?? notes.txt\n"
        responses["rev-list --count --left-right HEAD...@{upstream}"] = None
        responses["remote"] = "origin\n"
        with patch("repo_catalog.git.subprocess.run", side_effect=fake_git(responses)):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.has_uncommitted is True
        assert info.ahead_behind.has_upstream is False
        assert info.is_fork is False

    def test_one_failing_query_only_blanks_its_field(self, tmp_path):
        responses = dict(HEALTHY)
        responses["remote get-url origin"] = None
        with patch("repo_catalog.git.subprocess.run", side_effect=fake_git(responses)):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.remote_url is None
        assert info.owner.is_self
        assert info.is_fork is False
        assert info.current_branch == "main"

    def test_detached_head_reports_head(self, tmp_path):
        responses = dict(HEALTHY)
        responses["branch --show-current"] = "\n"
        with patch("repo_catalog.git.subprocess.run", side_effect=fake_git(responses)):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.current_branch == "HEAD"

    def test_everything_fails_returns_minimal(self, tmp_path):
        with patch("repo_catalog.git.subprocess.run", side_effect=fake_git({})):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.current_branch == "unknown"
        assert info.total_branches == 0
        assert info.last_commit_date == EPOCH

    def test_missing_binary(self, tmp_path):
        with patch("repo_catalog.git.subprocess.run", side_effect=FileNotFoundError("git")):
            info = GitMetadataExtractor().extract(tmp_path)
        assert info.current_branch == "unknown"

    def test_timeout_blanks_field(self, tmp_path):
        with patch("repo_catalog.git.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(["git"], 10)):
            assert GitMetadataExtractor().run(tmp_path, ["status"]) is None


class TestStatusAndLog:
    def test_status_summary(self, tmp_path):
        output = " M a.py\nM  b.py\nA  c.py\n D d.py\n?? e.txt\n?? f.txt\n"
        with patch("repo_catalog.git.subprocess.run",
                   side_effect=fake_git({"status --porcelain": output})):
            summary = GitMetadataExtractor().status_summary(tmp_path)
        assert (summary.modified, summary.added, summary.deleted, summary.untracked) == (2, 1, 1, 2)
        assert summary.total == 6

    def test_recent_commits(self, tmp_path):
        output = (
            "0123456789abcdef|Fix | in subject|Ada|ada@example.com|2024-03-01 12:00:00 +0000\n"
            "fedcba9876543210|Initial commit|Bob|bob@example.com|2024-02-01 09:00:00 +0000\n"
        )
        with patch("repo_catalog.git.subprocess.run",
                   side_effect=fake_git({"log --max-count=2 --format=%H|%s|%an|%ae|%ci": output})):
            commits = GitMetadataExtractor().recent_commits(tmp_path, 2)
        assert [c.hash for c in commits] == ["01234567", "fedcba98"]
        assert commits[0].subject == "Fix | in subject"
        assert commits[1].author == "Bob"
        assert commits[1].date.month == 2
