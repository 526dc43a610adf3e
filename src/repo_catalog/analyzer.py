"""Heuristic project analyzer. Read-only, no subprocesses.

Walks a repository's file tree (bounded depth), detects the primary
language, runtime, dependencies, databases, size, README quality,
tests/CI presence and license.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .models import Dependency, ProjectSize, ReadmeQuality, RepositoryMetadata

logger = logging.getLogger(__name__)

MAX_SCAN_DEPTH = 3
MIN_README_LENGTH = 100
MAX_README_SCORE = 10
MAX_MANIFEST_BYTES = 200_000
LINE_COUNT_CHUNK = 64 * 1024

# --- File tree patterns ---

IGNORE_DIRS = {
    "node_modules", "__pycache__", "venv", "env",
    "target", "build", "dist", "out", "bin", "obj",
    "vendor", "Pods", "DerivedData", "coverage", "htmlcov",
}

EXT_LANG = {
    ".py": "Python", ".pyi": "Python",
    ".js": "JavaScript", ".mjs": "JavaScript", ".cjs": "JavaScript", ".jsx": "JavaScript",
    ".ts": "TypeScript", ".tsx": "TypeScript", ".mts": "TypeScript",
    ".rs": "Rust",
    ".go": "Go",
    ".java": "Java", ".kt": "Kotlin", ".kts": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".swift": "Swift",
    ".c": "C",
    ".cpp": "C++", ".cc": "C++", ".cxx": "C++", ".hpp": "C++",
    ".cs": "C#",
    ".scala": "Scala",
    ".clj": "Clojure",
    ".ex": "Elixir", ".exs": "Elixir",
    ".hs": "Haskell",
    ".elm": "Elm",
    ".dart": "Dart",
    ".r": "R",
    ".m": "Objective-C", ".mm": "Objective-C++",
    ".pl": "Perl",
    ".lua": "Lua",
    ".sh": "Shell", ".bash": "Shell", ".zsh": "Shell",
    ".ps1": "PowerShell",
    ".sql": "SQL",
    ".html": "HTML", ".htm": "HTML",
    ".css": "CSS", ".scss": "SCSS", ".less": "Less",
    ".vue": "Vue",
    ".svelte": "Svelte",
    ".zig": "Zig",
}

CODE_EXTENSIONS = {
    ".js", ".jsx", ".ts", ".tsx", ".py", ".java", ".c", ".cpp", ".cs",
    ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".hs",
    ".dart", ".vue", ".svelte", ".html", ".css", ".scss", ".less",
}

# Checked in order against the top-level listing; first hit wins.
RUNTIME_MARKERS = [
    ("Node.js", ("package.json",)),
    ("Python", ("requirements.txt", "setup.py", "pyproject.toml")),
    ("JVM", ("pom.xml", "build.gradle", "build.gradle.kts")),
    (".NET", (".csproj", ".sln")),
    ("PHP", ("composer.json",)),
    ("Ruby", ("Gemfile",)),
    ("Go", ("go.mod",)),
    ("Rust", ("Cargo.toml",)),
]

# database -> substrings looked for in dependency names
DB_DEPENDENCY_KEYWORDS = {
    "MongoDB": ("mongoose", "mongodb", "pymongo", "motor"),
    "MySQL": ("mysql",),
    "PostgreSQL": ("pg", "postgres", "psycopg", "asyncpg"),
    "SQLite": ("sqlite",),
    "Redis": ("redis", "ioredis"),
    "Elasticsearch": ("elasticsearch",),
}

# database -> substrings looked for in compose files
DB_COMPOSE_KEYWORDS = {
    "MongoDB": ("mongo:", "mongodb:"),
    "MySQL": ("mysql:", "mariadb:"),
    "PostgreSQL": ("postgres:", "postgresql:"),
    "Redis": ("redis:",),
    "Elasticsearch": ("elasticsearch:",),
}

COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

README_FILES = ("README.md", "README.txt", "README.rst", "README")

LICENSE_FILES = ("LICENSE", "LICENSE.txt", "LICENSE.md", "LICENCE", "COPYING")

# Any phrase matches. Ordered: LGPL must be tested before GPL.
LICENSE_FINGERPRINTS = [
    ("MIT", ("mit license", "permission is hereby granted, free of charge")),
    ("Apache-2.0", ("apache license",)),
    ("LGPL", ("gnu lesser general public license", "gnu library general public license")),
    ("GPL", ("gnu general public license",)),
    ("BSD", ("bsd license", "redistribution and use in source and binary forms")),
    ("MPL-2.0", ("mozilla public license",)),
    ("ISC", ("isc license",)),
    ("Unlicense", ("unlicense", "this is free and unencumbered software")),
]

TEST_DIRS = {"test", "tests", "__tests__", "spec", "specs"}
TEST_FILE_RE = re.compile(r"(^test_|_test\.|\.test\.|\.spec\.|_spec\.)")
TEST_CONFIG_FILES = {
    "pytest.ini", "conftest.py", "tox.ini", "jest.config.js", "jest.config.ts",
    "vitest.config.ts", "vitest.config.js", "phpunit.xml", ".rspec",
}

CI_PATHS = (
    ".github/workflows",
    ".gitlab-ci.yml",
    ".travis.yml",
    "circle.yml",
    ".circleci/config.yml",
    "azure-pipelines.yml",
    "Jenkinsfile",
    ".drone.yml",
    "bitbucket-pipelines.yml",
)


@dataclass
class TreeStats:
    """Accumulated results of one bounded walk."""

    line_counts: dict[str, int] = field(default_factory=dict)
    size: ProjectSize = field(default_factory=ProjectSize)
    has_test_files: bool = False


def _should_skip_dir(name: str) -> bool:
    return name in IGNORE_DIRS or name.startswith(".")


def _count_lines(path: str) -> int:
    try:
        with open(path, "rb") as f:
            return sum(chunk.count(b"\n") for chunk in iter(lambda: f.read(LINE_COUNT_CHUNK), b"")) + 1
    except OSError:
        return 0


def _read_text(path: Path, limit: int = MAX_MANIFEST_BYTES) -> str | None:
    try:
        if not path.is_file():
            return None
        return path.read_text(errors="replace")[:limit]
    except OSError:
        return None


def walk_tree(root: str | Path, max_depth: int = MAX_SCAN_DEPTH) -> TreeStats:
    """Walk ``root`` up to ``max_depth`` levels, collecting language and size stats."""
    stats = TreeStats()

    def _walk(dirpath: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            with os.scandir(dirpath) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            return

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not _should_skip_dir(entry.name):
                        _walk(entry.path, depth + 1)
                    continue
                if not entry.is_file(follow_symlinks=False):
                    continue
                size = entry.stat(follow_symlinks=False).st_size
            except OSError:
                continue

            ext = os.path.splitext(entry.name)[1].lower()
            stats.size.total_files += 1
            stats.size.total_size += size
            if ext in CODE_EXTENSIONS:
                stats.size.code_files += 1
                stats.size.code_size += size

            lang = EXT_LANG.get(ext)
            if lang:
                stats.line_counts[lang] = stats.line_counts.get(lang, 0) + _count_lines(entry.path)

            if TEST_FILE_RE.search(entry.name.lower()):
                stats.has_test_files = True

    _walk(str(root), 0)
    return stats


def primary_language(line_counts: dict[str, int]) -> str:
    """Language with the most lines; ties go to the first one seen."""
    if not line_counts:
        return "Unknown"
    return max(line_counts, key=line_counts.__getitem__)


def detect_runtime(entries: list[str]) -> str | None:
    names = set(entries)
    for runtime, markers in RUNTIME_MARKERS:
        for marker in markers:
            if marker.startswith("."):
                if any(name.endswith(marker) for name in names):
                    return runtime
            elif marker in names:
                return runtime
    return None


# --- Manifest parsing ---

def _parse_package_json(content: str) -> tuple[list[Dependency], dict]:
    try:
        pkg = json.loads(content)
    except ValueError:
        return [], {}
    if not isinstance(pkg, dict):
        return [], {}

    deps = []
    for key, kind in (
        ("dependencies", "runtime"),
        ("devDependencies", "development"),
        ("peerDependencies", "peer"),
        ("optionalDependencies", "optional"),
    ):
        section = pkg.get(key) or {}
        if isinstance(section, dict):
            deps.extend(Dependency(name, str(version), kind) for name, version in section.items())
    return deps, pkg


def _parse_requirements(content: str) -> list[Dependency]:
    deps = []
    for line in content.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        match = re.match(r"^([A-Za-z0-9_.\-\[\]]+)\s*(.*)$", line)
        if match:
            name = match.group(1).split("[", 1)[0]
            deps.append(Dependency(name, match.group(2).strip(), "runtime"))
    return deps


def _parse_pyproject(content: str) -> list[Dependency]:
    """Dependencies from a PEP 621 ``dependencies = [...]`` array."""
    deps = []
    match = re.search(r"^dependencies\s*=\s*\[(.*?)\]\s*$", content, re.MULTILINE | re.DOTALL)
    if match:
        for raw in re.findall(r"[\"']([^\"']+)[\"']", match.group(1)):
            spec = re.match(r"^([A-Za-z0-9_.\-]+)(?:\[[^\]]*\])?\s*(.*)$", raw.strip())
            if spec:
                deps.append(Dependency(spec.group(1), spec.group(2).strip(), "runtime"))
    return deps


def _parse_cargo(content: str) -> list[Dependency]:
    deps = []
    section = None
    for line in content.splitlines():
        stripped = line.strip()
        header = re.match(r"^\[([^\]]+)\]$", stripped)
        if header:
            section = header.group(1)
            continue
        if section not in ("dependencies", "dev-dependencies"):
            continue
        match = re.match(r'^([\w-]+)\s*=\s*(.*)$', stripped)
        if not match:
            continue
        value = match.group(2)
        version = re.search(r'"([^"]*)"', value)
        if value.startswith("{"):
            version = re.search(r'version\s*=\s*"([^"]*)"', value)
        kind = "runtime" if section == "dependencies" else "development"
        deps.append(Dependency(match.group(1), version.group(1) if version else "", kind))
    return deps


def _parse_go_mod(content: str) -> list[Dependency]:
    deps = []
    for match in re.finditer(r"^\s*(?:require\s+)?([\w.\-]+\.[\w.\-/]+)\s+(v[\w.\-+]+)", content, re.MULTILINE):
        deps.append(Dependency(match.group(1), match.group(2), "runtime"))
    return deps


def _parse_composer(content: str) -> list[Dependency]:
    try:
        pkg = json.loads(content)
    except ValueError:
        return []
    deps = []
    for key, kind in (("require", "runtime"), ("require-dev", "development")):
        section = pkg.get(key) or {}
        if isinstance(section, dict):
            deps.extend(
                Dependency(name, str(version), kind)
                for name, version in section.items()
                if name != "php" and not name.startswith("ext-")
            )
    return deps


def _manifest_license(root: Path, package_json: dict) -> str | None:
    if isinstance(package_json.get("license"), str):
        return package_json["license"]
    for manifest in ("Cargo.toml", "pyproject.toml"):
        content = _read_text(root / manifest)
        if content:
            match = re.search(r'^license\s*=\s*(?:\{\s*text\s*=\s*)?"([^"]+)"', content, re.MULTILINE)
            if match:
                return match.group(1)
    return None


def identify_license(text: str) -> str:
    lower = " ".join(text.lower().split())
    for license_id, phrases in LICENSE_FINGERPRINTS:
        if not any(p in lower for p in phrases):
            continue
        if license_id == "GPL":
            return "GPL-2.0" if "version 2" in lower and "version 3" not in lower else "GPL-3.0"
        return license_id
    return "Unknown"


def score_readme(content: str | None) -> ReadmeQuality:
    if content is None:
        return ReadmeQuality()

    lower = content.lower()
    has_description = len(content) > MIN_README_LENGTH
    has_installation = "install" in lower or "setup" in lower
    has_usage = "usage" in lower or "example" in lower

    score = 1
    if has_description:
        score += 2
    if has_installation:
        score += 2
    if has_usage:
        score += 2
    if re.search(r"^#{1,6}\s", content, re.MULTILINE) or re.search(r"^[=\-~]{3,}\s*$", content, re.MULTILINE):
        score += 1
    if "[![" in content or "badge" in lower:
        score += 1

    return ReadmeQuality(
        exists=True,
        has_description=has_description,
        has_installation=has_installation,
        has_usage=has_usage,
        score=min(score, MAX_README_SCORE),
    )


class ProjectAnalyzer:
    """Builds :class:`RepositoryMetadata` from a repository's files."""

    def __init__(self, max_depth: int = MAX_SCAN_DEPTH):
        self.max_depth = max_depth

    def analyze(self, path: str | Path) -> RepositoryMetadata:
        """Analyze ``path``. Never raises; unreadable trees yield empty metadata."""
        try:
            return self._analyze(Path(path))
        except Exception:
            logger.warning("Failed to analyze %s", path, exc_info=True)
            return RepositoryMetadata()

    def _analyze(self, root: Path) -> RepositoryMetadata:
        try:
            entries = sorted(os.listdir(root))
        except OSError:
            return RepositoryMetadata()

        tree = walk_tree(root, self.max_depth)
        dependencies, package_json = self._dependencies(root)

        return RepositoryMetadata(
            language=primary_language(tree.line_counts),
            runtime=detect_runtime(entries),
            databases=self._databases(root, dependencies),
            dependencies=dependencies,
            project_size=tree.size,
            readme_quality=self._readme(root),
            has_tests=self._has_tests(root, entries, tree),
            has_cicd=any((root / p).exists() for p in CI_PATHS),
            license=self._license(root, package_json),
        )

    def _dependencies(self, root: Path) -> tuple[list[Dependency], dict]:
        deps: list[Dependency] = []
        package_json: dict = {}

        content = _read_text(root / "package.json")
        if content is not None:
            node_deps, package_json = _parse_package_json(content)
            deps.extend(node_deps)

        for manifest, parser in (
            ("requirements.txt", _parse_requirements),
            ("pyproject.toml", _parse_pyproject),
            ("Cargo.toml", _parse_cargo),
            ("go.mod", _parse_go_mod),
            ("composer.json", _parse_composer),
        ):
            content = _read_text(root / manifest)
            if content is not None:
                deps.extend(parser(content))

        return deps, package_json

    def _databases(self, root: Path, dependencies: list[Dependency]) -> list[str]:
        found = set()
        names = [d.name.lower() for d in dependencies]
        for db, keywords in DB_DEPENDENCY_KEYWORDS.items():
            for name in names:
                # "pg" is too short for a substring test
                if any(name == kw or (len(kw) > 2 and kw in name) for kw in keywords):
                    found.add(db)
                    break

        for compose in COMPOSE_FILES:
            content = _read_text(root / compose)
            if not content:
                continue
            for db, keywords in DB_COMPOSE_KEYWORDS.items():
                if any(kw in content for kw in keywords):
                    found.add(db)

        return sorted(found)

    def _readme(self, root: Path) -> ReadmeQuality:
        for fname in README_FILES:
            content = _read_text(root / fname, limit=1_000_000)
            if content is not None:
                return score_readme(content)
        return ReadmeQuality()

    def _has_tests(self, root: Path, entries: list[str], tree: TreeStats) -> bool:
        for name in entries:
            if name.lower() in TEST_DIRS and (root / name).is_dir():
                return True
            if name in TEST_CONFIG_FILES:
                return True
        return tree.has_test_files

    def _license(self, root: Path, package_json: dict) -> str | None:
        for fname in LICENSE_FILES:
            content = _read_text(root / fname, limit=20_000)
            if content is not None:
                return identify_license(content)
        return _manifest_license(root, package_json)


def analyze_repo(path: str | Path) -> RepositoryMetadata:
    """Run the default analyzer on ``path``."""
    return ProjectAnalyzer().analyze(path)
