"""Repo Catalog CLI - find, describe and filter the repositories on this machine.

Usage:
    repo-catalog --root ~/code scan
    repo-catalog --root ~/code list --language Python --git-state modified
    repo-catalog --root ~/code list --where totalFiles:greaterThan:100 --sort size --desc
    repo-catalog --root ~/code profile create "Dirty Go" --language Go --git-state modified
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .analyzer import MAX_README_SCORE
from .cache import CatalogCache
from .catalog import RepositoryCatalog, RepositoryNotFoundError, ScanStatus
from .config import (
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_EXCLUDE_PATHS,
    DEFAULT_MAX_CONCURRENT_SCANS,
    DEFAULT_SCAN_DEPTH,
    CatalogConfig,
)
from .filters import (
    BOOLEAN_FIELDS,
    GROUP_KEYS,
    NUMERIC_FIELDS,
    OPERATORS,
    SORT_KEYS,
    CustomCondition,
    DateRange,
    FilterCriteria,
    GitState,
    SizeRange,
    SortOption,
    git_state,
    group_by,
)
from .git import GitMetadataExtractor
from .models import EPOCH, Repository
from .profiles import FilterProfileManager, ProfileNotFoundError
from .scanner import DiscoveryScanner, detect_roots
from .store import JsonFileStore

console = Console()

DEFAULT_DATA_DIR = "~/.repo-catalog"
CACHE_FILE = "cache.json"
STATE_FILE = "state.json"
FAR_FUTURE = datetime(9999, 12, 31, tzinfo=timezone.utc)


@dataclass
class CliState:
    config: CatalogConfig
    data_dir: Path
    catalog: RepositoryCatalog | None = None

    def store(self) -> JsonFileStore:
        return JsonFileStore(self.data_dir / STATE_FILE)

    def get_catalog(self) -> RepositoryCatalog:
        if self.catalog is None:
            cache = CatalogCache(
                self.data_dir / CACHE_FILE,
                self.config.normalized_roots(),
                self.config.cache_max_age_seconds,
            )
            scanner = DiscoveryScanner(max_workers=self.config.max_concurrent_scans)
            self.catalog = RepositoryCatalog(self.config, scanner=scanner, cache=cache, store=self.store())
        return self.catalog

    def profiles(self) -> FilterProfileManager:
        return FilterProfileManager(self.store())


def _setup_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _run_scan(catalog: RepositoryCatalog, quiet: bool = False) -> ScanStatus:
    """Run a full scan, rendering progress unless ``quiet``."""
    if quiet:
        return catalog.scan()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Scanning...", total=100)

        def on_progress(message: str, percent: int | None) -> None:
            if percent is None:
                progress.console.print(f"[yellow]{message}[/]")
            else:
                progress.update(task, description=message, completed=percent)

        return catalog.scan(on_progress=on_progress)


def _load(state: CliState, quiet: bool = False) -> RepositoryCatalog:
    """Catalog restored from cache, or freshly scanned when the cache is unusable."""
    catalog = state.get_catalog()
    if not catalog.load_from_cache():
        _run_scan(catalog, quiet=quiet)
    return catalog


def _get_repo(catalog: RepositoryCatalog, path: str) -> Repository:
    try:
        return catalog.get(path)
    except RepositoryNotFoundError:
        raise click.ClickException(f"Repository not found in catalog: {path}")


def _get_profile(manager: FilterProfileManager, id_or_name: str):
    try:
        return manager.find(id_or_name)
    except ProfileNotFoundError:
        raise click.ClickException(f"Filter profile not found: {id_or_name}")


# --- Filter options ---

def _coerce(field_name: str, value: str):
    """Type a ``--where`` operand after its field. Text fields keep the string."""
    lowered = value.lower()
    if field_name in BOOLEAN_FIELDS and lowered in ("true", "false"):
        return lowered == "true"
    if field_name not in NUMERIC_FIELDS:
        return value
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _parse_where(ctx, param, values) -> list[CustomCondition]:
    conditions = []
    for raw in values:
        parts = raw.split(":", 2)
        if len(parts) != 3 or not parts[0]:
            raise click.BadParameter(f"expected FIELD:OP:VALUE, got {raw!r}", ctx=ctx, param=param)
        field_name, op, value = parts
        if op not in OPERATORS:
            raise click.BadParameter(
                f"unknown operator {op!r} (choose from {', '.join(OPERATORS)})", ctx=ctx, param=param
            )
        conditions.append(CustomCondition(field_name, op, _coerce(field_name, value)))
    return conditions


def filter_options(f):
    """Attach the filter options shared by ``list`` and ``profile create``."""
    options = [
        click.option("--language", "-l", "languages", multiple=True, help="Primary language (repeatable)"),
        click.option("--owner", "owners", multiple=True, help="Owner name, or 'self' (repeatable)"),
        click.option("--git-state", "git_states", multiple=True,
                     type=click.Choice([s.value for s in GitState if s is not GitState.CONFLICT]),
                     help="Git state (repeatable)"),
        click.option("--tag", "-t", "tags", multiple=True, help="Has any of these tags (repeatable)"),
        click.option("--favorites", "favorites_only", is_flag=True, help="Only favorites"),
        click.option("--exclude-archived", is_flag=True, help="Hide archived repositories"),
        click.option("--has-tests/--no-tests", default=None, help="Require tests present or absent"),
        click.option("--has-ci/--no-ci", "has_cicd", default=None, help="Require CI/CD present or absent"),
        click.option("--min-files", type=int, default=None, help="Minimum number of files"),
        click.option("--max-files", type=int, default=None, help="Maximum number of files"),
        click.option("--accessed-since", type=click.DateTime(), default=None, help="Last accessed on or after"),
        click.option("--accessed-until", type=click.DateTime(), default=None, help="Last accessed on or before"),
        click.option("--where", "-w", "conditions", multiple=True, callback=_parse_where,
                     help="Custom condition FIELD:OP:VALUE, e.g. totalFiles:greaterThan:100"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _utc(value: datetime | None, default: datetime) -> datetime:
    if value is None:
        return default
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _criteria(
    languages=(), owners=(), git_states=(), tags=(), favorites_only=False, exclude_archived=False,
    has_tests=None, has_cicd=None, min_files=None, max_files=None,
    accessed_since=None, accessed_until=None, conditions=(),
) -> FilterCriteria:
    size_range = None
    if min_files is not None or max_files is not None:
        size_range = SizeRange(min_files or 0, max_files)
    date_range = None
    if accessed_since is not None or accessed_until is not None:
        date_range = DateRange(_utc(accessed_since, EPOCH), _utc(accessed_until, FAR_FUTURE))
    return FilterCriteria(
        languages=list(languages),
        owners=list(owners),
        git_states=[GitState(s) for s in git_states],
        date_range=date_range,
        size_range=size_range,
        tags=list(tags),
        favorites_only=favorites_only,
        exclude_archived=exclude_archived,
        has_tests=has_tests,
        has_cicd=has_cicd,
        custom_conditions=list(conditions),
    )


# --- Commands ---

@click.group()
@click.version_option(version=__version__)
@click.option("--root", "-r", "roots", multiple=True, envvar="REPO_CATALOG_ROOTS",
              type=click.Path(file_okay=False), help="Directory to scan (repeatable)")
@click.option("--exclude", "-x", "excludes", multiple=True, envvar="REPO_CATALOG_EXCLUDE",
              help="Path fragment to skip (repeatable)")
@click.option("--depth", type=int, default=DEFAULT_SCAN_DEPTH, envvar="REPO_CATALOG_DEPTH",
              show_default=True, help="Maximum directory depth below each root")
@click.option("--include-hidden", is_flag=True, envvar="REPO_CATALOG_INCLUDE_HIDDEN",
              help="Descend into hidden directories")
@click.option("--workers", type=int, default=DEFAULT_MAX_CONCURRENT_SCANS, envvar="REPO_CATALOG_WORKERS",
              show_default=True, help="Repositories analyzed in parallel")
@click.option("--cache-max-age", type=int, default=DEFAULT_CACHE_MAX_AGE, envvar="REPO_CATALOG_CACHE_MAX_AGE",
              show_default=True, help="Seconds a cached scan stays valid")
@click.option("--data-dir", default=DEFAULT_DATA_DIR, envvar="REPO_CATALOG_DATA_DIR",
              show_default=True, help="Where the cache and preferences are kept")
@click.option("--verbose", "-v", is_flag=True, help="Log scan details to stderr")
@click.pass_context
def cli(ctx, roots, excludes, depth, include_hidden, workers, cache_max_age, data_dir, verbose):
    """Repo Catalog - discover the git repositories under your project folders.

    Scans are cached, so after the first run listing and filtering are instant.
    """
    _setup_logging(verbose)
    config = CatalogConfig(
        root_paths=list(roots),
        exclude_paths=list(excludes) if excludes else list(DEFAULT_EXCLUDE_PATHS),
        scan_depth=depth,
        include_hidden=include_hidden,
        max_concurrent_scans=workers,
        cache_max_age_seconds=cache_max_age,
    )
    validation = config.validate()
    if not validation.is_valid:
        raise click.UsageError("; ".join(validation.errors))
    for warning in validation.warnings:
        logging.getLogger(__name__).info(warning)
    ctx.obj = CliState(config=config, data_dir=Path(data_dir).expanduser())


@cli.command()
@click.pass_obj
def scan(state: CliState):
    """Rescan the configured roots and refresh the cache."""
    if not state.config.root_paths:
        raise click.ClickException(
            "No roots configured. Pass --root or set REPO_CATALOG_ROOTS (try: repo-catalog roots detect)."
        )
    catalog = state.get_catalog()
    # Keeps tags, archive flags and access counts from the previous scan.
    catalog.load_from_cache()
    status = _run_scan(catalog)
    if status is ScanStatus.COMPLETED:
        console.print(f"[green]Found {len(catalog)} repositories[/]")
    else:
        console.print(f"[yellow]Scan {status.value.replace('_', ' ')}[/]")


@cli.command("list")
@filter_options
@click.option("--search", "-s", default=None, help="Substring of the name")
@click.option("--sort", "sort_field", type=click.Choice(list(SORT_KEYS)), default="name", show_default=True)
@click.option("--desc", is_flag=True, help="Sort descending")
@click.option("--group-by", "group_key", type=click.Choice(["none", *GROUP_KEYS]), default="none", show_default=True)
@click.option("--profile", "-p", default=None, help="Apply a saved filter profile (id or name)")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def list_repos(state: CliState, search, sort_field, desc, group_key, profile, as_json, **filters):
    """List repositories, optionally filtered, sorted and grouped."""
    catalog = _load(state, quiet=as_json)
    repos = catalog.list(_criteria(**filters), SortOption(sort_field, desc), search)
    if profile:
        manager = state.profiles()
        repos = manager.apply(_get_profile(manager, profile).id, repos)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in repos], indent=2))
        return

    if not repos:
        console.print("[yellow]No repositories match.[/]")
        return
    groups = group_by(repos, group_key)
    for title, members in groups.items():
        _print_repo_table(members, title if group_key != "none" else None)


@cli.command()
@click.argument("path")
@click.option("--commits", default=5, show_default=True, help="Recent commits to show")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON to stdout")
@click.pass_obj
def show(state: CliState, path: str, commits: int, as_json: bool):
    """Show everything known about one repository."""
    catalog = _load(state, quiet=as_json)
    repo = _get_repo(catalog, path)
    catalog.record_access(repo.path)

    if as_json:
        click.echo(json.dumps(repo.to_dict(), indent=2))
        return

    _print_repo_detail(repo)
    extractor = GitMetadataExtractor()
    status = extractor.status_summary(repo.path)
    if status.total:
        console.print(
            f"Working tree: {status.modified} modified, {status.added} added, "
            f"{status.deleted} deleted, {status.untracked} untracked"
        )
    recent = extractor.recent_commits(repo.path, commits) if commits > 0 else []
    if recent:
        table = Table(title="Recent Commits", border_style="dim")
        table.add_column("Hash", style="cyan")
        table.add_column("Date")
        table.add_column("Author")
        table.add_column("Subject")
        for c in recent:
            table.add_row(c.hash, c.date.strftime("%Y-%m-%d"), c.author, c.subject)
        console.print(table)


@cli.command()
@click.argument("path")
@click.pass_obj
def refresh(state: CliState, path: str):
    """Re-read git state and project metadata for one repository."""
    catalog = _load(state)
    repo = _get_repo(catalog, path)
    repo = catalog.refresh(repo.path)
    console.print(f"[green]Refreshed {repo.label}[/]")


@cli.command()
@click.argument("path")
@click.option("--off", is_flag=True, help="Remove from favorites")
@click.pass_obj
def favorite(state: CliState, path: str, off: bool):
    """Mark a repository as favorite."""
    catalog = _load(state)
    repo = catalog.set_favorite(_get_repo(catalog, path).path, not off)
    verb = "Added" if repo.is_favorite else "Removed"
    console.print(f"{verb} [cyan]{repo.label}[/] {'to' if repo.is_favorite else 'from'} favorites")


@cli.command()
@click.argument("path")
@click.argument("tags", nargs=-1)
@click.pass_obj
def tag(state: CliState, path: str, tags: tuple[str, ...]):
    """Replace the tags of a repository. No TAGS clears them."""
    catalog = _load(state)
    repo = catalog.set_tags(_get_repo(catalog, path).path, tags)
    console.print(f"[cyan]{repo.label}[/] tags: {', '.join(repo.tags) or '(none)'}")


@cli.command()
@click.argument("path")
@click.option("--off", is_flag=True, help="Unarchive")
@click.pass_obj
def archive(state: CliState, path: str, off: bool):
    """Archive a repository, hiding it from --exclude-archived listings."""
    catalog = _load(state)
    repo = catalog.set_archived(_get_repo(catalog, path).path, not off)
    console.print(f"[cyan]{repo.label}[/] {'archived' if repo.is_archived else 'unarchived'}")


@cli.command()
@click.pass_obj
def stats(state: CliState):
    """Summarize the catalog."""
    catalog = _load(state)
    s = catalog.stats()
    console.print(Panel.fit(
        f"[bold]{s.total}[/] repositories | [bold]{s.favorites}[/] favorites | [bold]{s.archived}[/] archived",
        border_style="cyan",
        title="Catalog",
    ))
    if s.by_language:
        table = Table(title="Languages", border_style="dim")
        table.add_column("Language", style="bold")
        table.add_column("Repositories", justify="right")
        for language, count in sorted(s.by_language.items(), key=lambda x: (-x[1], x[0])):
            table.add_row(language, str(count))
        console.print(table)


# --- Roots ---

@cli.group("roots")
def roots_group():
    """Find folders worth scanning."""


@roots_group.command("detect")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON to stdout")
def roots_detect(as_json: bool):
    """Look for common project folders in your home directory."""
    candidates = detect_roots()
    if as_json:
        click.echo(json.dumps([asdict(c) for c in candidates], indent=2))
        return
    if not candidates:
        console.print("[yellow]No common project folders found.[/]")
        return

    table = Table(title="Candidate roots", border_style="dim")
    table.add_column("Path", style="bold")
    table.add_column("Repositories", justify="right")
    table.add_column("Folders", justify="right")
    for c in candidates:
        table.add_row(c.path, str(c.repository_count), str(c.folder_count))
    console.print(table)
    best = next((c for c in candidates if c.has_repositories), None)
    if best is not None:
        console.print(f"[dim]Scan with: repo-catalog --root {best.path} scan[/]")


# --- Cache ---

@cli.group()
def cache():
    """Inspect or clear the scan cache."""


@cache.command("info")
@click.pass_obj
def cache_info(state: CliState):
    """Show cache location, size and age."""
    s = state.get_catalog().cache.stats()
    table = Table(show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("File", str(state.data_dir / CACHE_FILE))
    table.add_row("Exists", "yes" if s.exists else "no")
    if s.exists:
        table.add_row("Repositories", str(s.repository_count))
        table.add_row("Last updated", s.last_updated.strftime("%Y-%m-%d %H:%M:%S UTC"))
        table.add_row("Size", f"{s.size:,} bytes")
    console.print(table)


@cache.command("clear")
@click.pass_obj
def cache_clear(state: CliState):
    """Delete the scan cache. The next command rescans."""
    state.get_catalog().cache.clear()
    console.print("[green]Cache cleared[/]")


# --- Profiles ---

@cli.group()
def profile():
    """Manage saved filter profiles."""


@profile.command("create")
@click.argument("name")
@filter_options
@click.option("--description", "-d", default=None)
@click.option("--icon", default=None)
@click.option("--color", default=None)
@click.option("--label", "labels", multiple=True, help="Profile label (repeatable)")
@click.pass_obj
def profile_create(state: CliState, name, description, icon, color, labels, **filters):
    """Save the given filters as a named profile."""
    p = state.profiles().create(
        name, _criteria(**filters), description=description, icon=icon, color=color, tags=labels
    )
    console.print(f"Created profile [cyan]{p.name}[/] ({p.id})")


@profile.command("list")
@click.pass_obj
def profile_list(state: CliState):
    """List saved profiles."""
    profiles = state.profiles().list()
    if not profiles:
        console.print("[yellow]No filter profiles.[/]")
        return
    table = Table(title="Filter Profiles", border_style="dim")
    table.add_column("Id", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Active")
    table.add_column("Description")
    for p in profiles:
        table.add_row(p.id, p.name, "*" if p.is_active else "", p.description or "")
    console.print(table)


@profile.command("apply")
@click.argument("profile_ref")
@click.pass_obj
def profile_apply(state: CliState, profile_ref: str):
    """Activate a profile and list what it matches."""
    manager = state.profiles()
    p = _get_profile(manager, profile_ref)
    catalog = _load(state)
    repos = manager.apply(p.id, catalog.list(sort=SortOption()))
    console.print(f"Profile [cyan]{p.name}[/] active: {len(repos)} repositories match")
    if repos:
        _print_repo_table(repos)


@profile.command("clear")
@click.pass_obj
def profile_clear(state: CliState):
    """Deactivate the active profile."""
    state.profiles().clear_active()
    console.print("No profile active")


@profile.command("delete")
@click.argument("profile_ref")
@click.pass_obj
def profile_delete(state: CliState, profile_ref: str):
    """Delete a profile."""
    manager = state.profiles()
    p = _get_profile(manager, profile_ref)
    manager.delete(p.id)
    console.print(f"Deleted profile [cyan]{p.name}[/]")


@profile.command("export")
@click.argument("profile_ref")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write to file instead of stdout")
@click.pass_obj
def profile_export(state: CliState, profile_ref: str, output: str | None):
    """Export a profile as JSON."""
    manager = state.profiles()
    data = json.dumps(manager.export(_get_profile(manager, profile_ref).id), indent=2)
    if output:
        Path(output).write_text(data)
        console.print(f"[green]Profile written to {output}[/]")
    else:
        click.echo(data)


@profile.command("import")
@click.argument("file", type=click.File("r"))
@click.pass_obj
def profile_import(state: CliState, file):
    """Import a profile exported with `profile export`."""
    try:
        data = json.load(file)
        p = state.profiles().import_profile(data)
    except (ValueError, AttributeError) as e:
        raise click.ClickException(f"Cannot import profile: {e}")
    console.print(f"Imported profile [cyan]{p.name}[/] ({p.id})")


@profile.command("stats")
@click.argument("profile_ref")
@click.pass_obj
def profile_stats(state: CliState, profile_ref: str):
    """Show what a profile matches."""
    manager = state.profiles()
    p = _get_profile(manager, profile_ref)
    s = manager.statistics(p.id, _load(state).list())
    console.print(f"Profile [cyan]{p.name}[/]: {s.total_repositories} repositories")
    if s.language_distribution:
        langs = ", ".join(f"{k} ({v})" for k, v in sorted(s.language_distribution.items(), key=lambda x: -x[1]))
        console.print(f"Languages: {langs}")
    if s.total_repositories:
        console.print(f"Last activity: {s.last_activity:%Y-%m-%d %H:%M}")


# --- Output ---

def _fmt_date(value: datetime) -> str:
    return "-" if value == EPOCH else value.strftime("%Y-%m-%d")


def _print_repo_table(repos: list[Repository], title: str | None = None) -> None:
    table = Table(title=title, border_style="dim")
    table.add_column("", width=1)
    table.add_column("Name", style="bold")
    table.add_column("Language")
    table.add_column("Branch")
    table.add_column("State")
    table.add_column("Owner")
    table.add_column("Last Commit")
    table.add_column("Path", style="dim")

    state_styles = {GitState.MODIFIED: "yellow", GitState.BEHIND: "red", GitState.AHEAD: "cyan"}
    for r in repos:
        s = git_state(r)
        style = state_styles.get(s)
        table.add_row(
            "*" if r.is_favorite else "",
            r.label,
            r.metadata.language,
            r.git_info.current_branch,
            f"[{style}]{s.value}[/]" if style else s.value,
            r.git_info.owner.key,
            _fmt_date(r.git_info.last_commit_date),
            r.path,
        )
    console.print(table)


def _print_repo_detail(repo: Repository) -> None:
    info, meta = repo.git_info, repo.metadata
    table = Table(title=repo.label, show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Path", repo.path)
    table.add_row("Language", meta.language)
    if meta.runtime:
        table.add_row("Runtime", meta.runtime)
    table.add_row("Branch", f"{info.current_branch} ({info.total_branches} branches)")
    state = git_state(repo).value
    if info.ahead_behind.has_upstream:
        state += f" (ahead {info.ahead_behind.ahead}, behind {info.ahead_behind.behind})"
    table.add_row("State", state)
    if info.remote_url:
        table.add_row("Remote", info.remote_url + (" (fork)" if info.is_fork else ""))
    table.add_row("Owner", info.owner.key)
    table.add_row("Last commit", _fmt_date(info.last_commit_date))
    size = meta.project_size
    table.add_row("Files", f"{size.total_files:,} ({size.code_files:,} code, {size.total_size:,} bytes)")
    if meta.databases:
        table.add_row("Databases", ", ".join(meta.databases))
    if meta.dependencies:
        names = ", ".join(d.name for d in meta.dependencies[:10])
        extra = len(meta.dependencies) - 10
        table.add_row("Dependencies", names + (f" (+{extra} more)" if extra > 0 else ""))
    table.add_row("Tests", "yes" if meta.has_tests else "no")
    table.add_row("CI/CD", "yes" if meta.has_cicd else "no")
    if meta.license:
        table.add_row("License", meta.license)
    readme = meta.readme_quality
    table.add_row("README", f"{readme.score}/{MAX_README_SCORE}" if readme.exists else "missing")
    if repo.tags:
        table.add_row("Tags", ", ".join(repo.tags))
    flags = [name for name, on in (("favorite", repo.is_favorite), ("archived", repo.is_archived)) if on]
    if flags:
        table.add_row("Flags", ", ".join(flags))
    table.add_row("Accessed", f"{repo.access_count} times")
    console.print(table)


if __name__ == "__main__":
    cli()
