"""Tests for the command line interface."""

import json
import subprocess
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from repo_catalog import __version__
from repo_catalog.main import cli


@pytest.fixture(autouse=True)
def no_git():
    """Every git query fails, so repositories get minimal git info."""
    def run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 128, "", "fatal: not a git repository")

    with patch("repo_catalog.git.subprocess.run", side_effect=run) as mock_run:
        yield mock_run


@pytest.fixture
def root(tmp_path):
    base = tmp_path / "code"
    for name, filename in (("api", "main.go"), ("cli", "cmd.go"), ("engine", "lib.rs")):
        repo = base / name
        (repo / ".git").mkdir(parents=True)
        (repo / filename).write_text("// source\n" * 10)
    (base / "engine" / "tests").mkdir()
    return base


@pytest.fixture
def invoke(tmp_path, root):
    runner = CliRunner()
    data_dir = tmp_path / "data"

    def _invoke(*args, **kwargs):
        return runner.invoke(cli, ["--root", str(root), "--data-dir", str(data_dir), *args], **kwargs)

    _invoke.data_dir = data_dir
    return _invoke


def listed(result):
    assert result.exit_code == 0, result.output
    return sorted(r["name"] for r in json.loads(result.stdout))


class TestGroup:
    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_depth_rejected(self, invoke):
        result = invoke("--depth", "0", "scan")
        assert result.exit_code == 2
        assert "Scan depth" in result.output

    def test_scan_without_roots(self, tmp_path):
        result = CliRunner().invoke(cli, ["--data-dir", str(tmp_path), "scan"])
        assert result.exit_code == 1
        assert "No roots configured" in result.output

    def test_roots_from_environment(self, tmp_path, root):
        result = CliRunner().invoke(
            cli, ["--data-dir", str(tmp_path / "data"), "list", "--json"],
            env={"REPO_CATALOG_ROOTS": str(root)},
        )
        assert listed(result) == ["api", "cli", "engine"]


class TestScanAndList:
    def test_scan_writes_cache(self, invoke):
        result = invoke("scan")
        assert result.exit_code == 0, result.output
        assert "Found 3 repositories" in result.output
        assert (invoke.data_dir / "cache.json").exists()

    def test_list_json(self, invoke, root):
        result = invoke("list", "--json")
        data = json.loads(result.stdout)
        assert [r["name"] for r in data] == ["api", "cli", "engine"]
        assert data[0]["path"] == str(root / "api")
        assert data[0]["git_info"]["current_branch"] == "unknown"

    def test_list_filters(self, invoke):
        invoke("scan")
        assert listed(invoke("list", "--language", "Go", "--json")) == ["api", "cli"]
        assert listed(invoke("list", "--has-tests", "--json")) == ["engine"]
        assert listed(invoke("list", "--search", "ENG", "--json")) == ["engine"]
        assert listed(invoke("list", "--git-state", "modified", "--json")) == []

    def test_reserved_git_state_not_offered(self, invoke):
        result = invoke("list", "--git-state", "conflict")
        assert result.exit_code == 2
        assert "conflict" in result.output

    def test_list_where(self, invoke):
        invoke("scan")
        assert listed(invoke("list", "--where", "name:startsWith:c", "--json")) == ["cli"]
        assert listed(invoke("list", "--where", "hasTests:equals:true", "--json")) == ["engine"]
        assert listed(invoke("list", "--where", "totalFiles:greaterThan:5", "--json")) == []

    def test_list_where_text_operand_stays_text(self, invoke, root):
        (root / "123" / ".git").mkdir(parents=True)
        (root / "true" / ".git").mkdir(parents=True)
        assert listed(invoke("list", "--where", "name:equals:123", "--json")) == ["123"]
        assert listed(invoke("list", "--where", "name:equals:true", "--json")) == ["true"]
        assert len(listed(invoke("list", "--where", "accessCount:equals:0", "--json"))) == 5

    def test_list_where_rejects_bad_syntax(self, invoke):
        result = invoke("list", "--where", "name-equals-api")
        assert result.exit_code == 2
        assert "FIELD:OP:VALUE" in result.output

    def test_list_where_rejects_unknown_operator(self, invoke):
        result = invoke("list", "--where", "name:like:api")
        assert result.exit_code == 2
        assert "unknown operator" in result.output

    def test_list_sorted_descending(self, invoke):
        invoke("scan")
        result = invoke("list", "--sort", "name", "--desc", "--json")
        assert [r["name"] for r in json.loads(result.stdout)] == ["engine", "cli", "api"]

    def test_list_table(self, invoke):
        invoke("scan")
        result = invoke("list", "--group-by", "language")
        assert result.exit_code == 0, result.output
        assert "Go" in result.output
        assert "Rust" in result.output

    def test_list_nothing_matches(self, invoke):
        invoke("scan")
        result = invoke("list", "--language", "COBOL")
        assert "No repositories match" in result.output

    def test_cached_list_does_not_rerun_git(self, invoke, no_git):
        invoke("scan")
        calls = no_git.call_count
        invoke("list", "--json")
        assert no_git.call_count == calls


class TestRepositoryCommands:
    def test_favorite_and_unfavorite(self, invoke, root):
        invoke("scan")
        result = invoke("favorite", str(root / "api"))
        assert result.exit_code == 0, result.output
        assert listed(invoke("list", "--favorites", "--json")) == ["api"]

        invoke("favorite", str(root / "api"), "--off")
        assert listed(invoke("list", "--favorites", "--json")) == []

    def test_favorites_survive_rescan(self, invoke, root):
        invoke("scan")
        invoke("favorite", str(root / "cli"))
        invoke("scan")
        assert listed(invoke("list", "--favorites", "--json")) == ["cli"]

    def test_tag_and_archive(self, invoke, root):
        invoke("scan")
        invoke("tag", str(root / "engine"), "oss", "db")
        invoke("archive", str(root / "api"))
        assert listed(invoke("list", "--tag", "oss", "--json")) == ["engine"]
        assert listed(invoke("list", "--exclude-archived", "--json")) == ["cli", "engine"]

    def test_tags_survive_root_change(self, tmp_path, root):
        runner = CliRunner()
        base = ["--data-dir", str(tmp_path / "data")]
        other = tmp_path / "other"
        other.mkdir()

        result = runner.invoke(cli, [*base, "--root", str(root), "tag", str(root / "api"), "work"])
        assert result.exit_code == 0, result.output
        runner.invoke(cli, [*base, "--root", str(root), "--root", str(other), "list"])
        assert listed(runner.invoke(cli, [*base, "--root", str(root), "list", "--tag", "work", "--json"])) == ["api"]

    def test_archive_survives_cache_clear(self, invoke, root):
        invoke("archive", str(root / "cli"))
        invoke("cache", "clear")
        assert listed(invoke("list", "--exclude-archived", "--json")) == ["api", "engine"]

    def test_show_json_records_access(self, invoke, root):
        invoke("scan")
        invoke("show", str(root / "api"), "--json")
        result = invoke("show", str(root / "api"), "--json")
        data = json.loads(result.stdout)
        assert data["name"] == "api"
        assert data["metadata"]["language"] == "Go"
        assert data["access_count"] == 2

    def test_show_table(self, invoke, root):
        invoke("scan")
        result = invoke("show", str(root / "engine"))
        assert result.exit_code == 0, result.output
        assert "Rust" in result.output

    def test_unknown_repository(self, invoke, tmp_path):
        invoke("scan")
        result = invoke("show", str(tmp_path / "elsewhere"))
        assert result.exit_code == 1
        assert "Repository not found" in result.output

    def test_refresh(self, invoke, root):
        invoke("scan")
        result = invoke("refresh", str(root / "cli"))
        assert result.exit_code == 0, result.output
        assert "Refreshed cli" in result.output

    def test_stats(self, invoke):
        invoke("scan")
        result = invoke("stats")
        assert result.exit_code == 0, result.output
        assert "3 repositories" in result.output


class TestCacheCommands:
    def test_info_and_clear(self, invoke):
        invoke("scan")
        result = invoke("cache", "info")
        assert result.exit_code == 0, result.output
        assert "yes" in result.output

        result = invoke("cache", "clear")
        assert result.exit_code == 0
        assert not (invoke.data_dir / "cache.json").exists()


class TestProfileCommands:
    def test_create_list_apply(self, invoke):
        invoke("scan")
        result = invoke("profile", "create", "Go only", "--language", "Go", "-d", "Go services")
        assert result.exit_code == 0, result.output
        assert "Created profile" in result.output

        result = invoke("profile", "list")
        assert "Go only" in result.output

        result = invoke("profile", "apply", "Go only")
        assert result.exit_code == 0, result.output
        assert "2 repositories match" in result.output

    def test_list_with_profile(self, invoke):
        invoke("scan")
        invoke("profile", "create", "Rust", "--language", "Rust")
        assert listed(invoke("list", "--profile", "Rust", "--json")) == ["engine"]

    def test_export_import(self, invoke, tmp_path):
        invoke("profile", "create", "Tested", "--has-tests")
        result = invoke("profile", "export", "Tested")
        exported = json.loads(result.stdout)
        assert exported["profile"]["filters"]["has_tests"] is True

        path = tmp_path / "profile.json"
        path.write_text(result.stdout)
        result = invoke("profile", "import", str(path))
        assert result.exit_code == 0, result.output
        assert "Imported profile" in result.output

    def test_import_rejects_bad_file(self, invoke, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"version": "0.0.1", "profile": {"name": "x"}}))
        result = invoke("profile", "import", str(path))
        assert result.exit_code == 1
        assert "Cannot import profile" in result.output

    def test_stats_and_delete(self, invoke):
        invoke("scan")
        invoke("profile", "create", "Go", "--language", "Go")
        result = invoke("profile", "stats", "Go")
        assert "2 repositories" in result.output

        result = invoke("profile", "delete", "Go")
        assert result.exit_code == 0
        result = invoke("profile", "stats", "Go")
        assert result.exit_code == 1
        assert "Filter profile not found" in result.output

    def test_clear(self, invoke):
        invoke("profile", "create", "Go", "--language", "Go")
        invoke("scan")
        invoke("profile", "apply", "Go")
        result = invoke("profile", "clear")
        assert result.exit_code == 0
        assert "No profile active" in result.output


class TestRootsCommands:
    def test_detect(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "code" / "api" / ".git").mkdir(parents=True)
        (tmp_path / "dev").mkdir()

        result = CliRunner().invoke(cli, ["roots", "detect", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [c["path"] for c in data] == [str(tmp_path / "code"), str(tmp_path / "dev")]
        assert data[0]["repository_count"] == 1

        result = CliRunner().invoke(cli, ["roots", "detect"])
        assert result.exit_code == 0, result.output
        assert "Candidate roots" in result.output

    def test_detect_nothing(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        result = CliRunner().invoke(cli, ["roots", "detect"])
        assert result.exit_code == 0
        assert "No common project folders" in result.output
