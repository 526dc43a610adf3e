"""Git metadata extraction.

Shells out to the ``git`` binary with a fixed set of read-only queries.
Every query is independent: a failure, timeout or missing binary only
blanks the field that query feeds, never the whole result.
"""

from __future__ import annotations

import logging
import re
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .models import EPOCH, AheadBehind, GitInfo, Owner

logger = logging.getLogger(__name__)

GIT_BINARY = "git"
GIT_TIMEOUT = 10  # seconds per git invocation

REMOTE_URL_ARGS = ["remote", "get-url", "origin"]
CURRENT_BRANCH_ARGS = ["branch", "--show-current"]
BRANCHES_ARGS = ["branch", "-a"]
LAST_COMMIT_ARGS = ["log", "-1", "--format=%ci"]
STATUS_ARGS = ["status", "--porcelain"]
AHEAD_BEHIND_ARGS = ["rev-list", "--count", "--left-right", "HEAD...@{upstream}"]
REMOTES_ARGS = ["remote"]

# host -> owner profile URL template
OWNER_HOSTS = {
    "github.com": "https://github.com/{owner}",
    "gitlab.com": "https://gitlab.com/{owner}",
    "bitbucket.org": "https://bitbucket.org/{owner}",
}

_OWNER_RE = re.compile(
    r"(?P<host>github\.com|gitlab\.com|bitbucket\.org)[:/]+(?P<owner>[^/\s]+)/"
)


@dataclass
class StatusSummary:
    """Counts from ``git status --porcelain``."""

    added: int = 0
    modified: int = 0
    deleted: int = 0
    untracked: int = 0
    total: int = 0


@dataclass
class Commit:
    hash: str
    subject: str
    author: str
    email: str
    date: datetime


def is_git_repository(path: str | Path) -> bool:
    """True if ``path`` holds a ``.git`` directory or a ``gitdir:`` pointer file."""
    marker = Path(path) / ".git"
    try:
        if marker.is_dir():
            return True
        if marker.is_file():
            with marker.open("r", errors="replace") as f:
                return f.read(64).startswith("gitdir:")
    except OSError:
        return False
    return False


def parse_owner(remote_url: str | None) -> Owner:
    """Owner from a remote URL. Supports https and scp-style ssh remotes."""
    if not remote_url:
        return Owner.self_owned()
    match = _OWNER_RE.search(remote_url)
    if not match:
        return Owner.self_owned()
    owner = match.group("owner")
    return Owner.external(owner, OWNER_HOSTS[match.group("host")].format(owner=owner))


def parse_branches(output: str) -> list[str]:
    branches = []
    for line in output.splitlines():
        name = re.sub(r"^\*?\s*", "", line).strip()
        if not name or name.startswith("remotes/origin/HEAD"):
            continue
        branches.append(name)
    return branches


def parse_commit_date(output: str | None) -> datetime:
    if not output:
        return EPOCH
    try:
        # %ci: "2024-03-01 12:34:56 +0100"
        return datetime.strptime(output.strip(), "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return EPOCH


def parse_ahead_behind(output: str | None) -> AheadBehind:
    if output is None:
        return AheadBehind()
    parts = output.split()
    try:
        ahead = int(parts[0]) if parts else 0
        behind = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return AheadBehind()
    return AheadBehind(ahead=ahead, behind=behind, has_upstream=True)


class GitMetadataExtractor:
    """Collects :class:`GitInfo` for a working tree by running ``git``."""

    def __init__(self, binary: str = GIT_BINARY, timeout: float = GIT_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def run(self, path: str | Path, args: list[str]) -> str | None:
        """Run one git command. Returns stripped stdout, or None if unavailable."""
        try:
            result = subprocess.run(
                [self.binary, *args],
                cwd=path, capture_output=True, text=True, timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.debug("git %s timed out in %s", " ".join(args), path)
            return None
        except OSError as e:
            logger.debug("git %s could not run in %s: %s", " ".join(args), path, e)
            return None

        if result.returncode != 0:
            logger.debug("git %s exited %s in %s", " ".join(args), result.returncode, path)
            return None
        if result.stderr and not result.stdout:
            return None
        return result.stdout.strip()

    def extract(self, path: str | Path) -> GitInfo:
        """Gather git info for ``path``. Never raises."""
        queries = {
            "remote_url": REMOTE_URL_ARGS,
            "branch": CURRENT_BRANCH_ARGS,
            "branches": BRANCHES_ARGS,
            "last_commit": LAST_COMMIT_ARGS,
            "status": STATUS_ARGS,
            "ahead_behind": AHEAD_BEHIND_ARGS,
            "remotes": REMOTES_ARGS,
        }
        try:
            with ThreadPoolExecutor(max_workers=len(queries)) as pool:
                futures = {key: pool.submit(self.run, path, args) for key, args in queries.items()}
                out = {key: fut.result() for key, fut in futures.items()}
        except Exception:
            logger.warning("Failed to get git info for %s", path, exc_info=True)
            return GitInfo.minimal()

        if all(value is None for value in out.values()):
            return GitInfo.minimal()

        remote_url = out["remote_url"] or None
        remotes = [r.strip() for r in (out["remotes"] or "").splitlines()]
        return GitInfo(
            remote_url=remote_url,
            current_branch=out["branch"] or "HEAD",
            total_branches=len(parse_branches(out["branches"] or "")),
            last_commit_date=parse_commit_date(out["last_commit"]),
            has_uncommitted=bool(out["status"]),
            ahead_behind=parse_ahead_behind(out["ahead_behind"]),
            is_fork=bool(remote_url) and "upstream" in remotes,
            owner=parse_owner(remote_url),
        )

    def status_summary(self, path: str | Path) -> StatusSummary:
        output = self.run(path, STATUS_ARGS)
        summary = StatusSummary()
        if not output:
            return summary
        for line in output.splitlines():
            if not line.strip():
                continue
            summary.total += 1
            code = line[:2]
            if "?" in code:
                summary.untracked += 1
            elif "A" in code:
                summary.added += 1
            elif "D" in code:
                summary.deleted += 1
            elif "M" in code:
                summary.modified += 1
        return summary

    def recent_commits(self, path: str | Path, count: int = 10) -> list[Commit]:
        output = self.run(path, ["log", f"--max-count={count}", "--format=%H|%s|%an|%ae|%ci"])
        commits = []
        for line in (output or "").splitlines():
            parts = line.split("|")
            if len(parts) < 5:
                continue
            # subjects may contain the separator
            commit_hash, author, email, date = parts[0], parts[-3], parts[-2], parts[-1]
            subject = "|".join(parts[1:-3])
            commits.append(Commit(
                hash=commit_hash[:8],
                subject=subject[:120],
                author=author,
                email=email,
                date=parse_commit_date(date),
            ))
        return commits
