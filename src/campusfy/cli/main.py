"""
CLI Main - Typer command-line interface.
========================================

Commands:
- load: Load or refresh a tenant's course cache
- search: Search courses with keywords, topics, filters and sorting
- course: Show one course
- status: Show cache age and freshness
- clear: Delete a tenant's cache
- info: Show configuration and tenants
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from campusfy.shared.logging import LogContext, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="campusfy",
    help="""🎓 Campusfy - Course search with a local, self-refreshing cache

Downloads a university's course catalog once, keeps it on disk, refreshes it
in the background when it goes stale, and searches it locally with keywords,
semantic topics, structured filters and experience preferences.

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

COMMANDS OVERVIEW:

  load     Load the catalog (blocking) or refresh it (--background)
           -t, --tenant       University id (wisco, utah, michigan, osu)
           -f, --fixture      Load from a JSON file instead of the API
           --sync             Pull only courses changed since the last load
           -v, --verbose      Show debug logging

  search   Search the cached catalog
           --topic            Semantic topic (repeatable)
           --filter           key=value attribute filter (repeatable)
           -e, --experience   Easy, Light Workload, Fun, High GPA
           --gpa              Sort by GPA (clears experience filters)

  course   Show a single course by code
  status   Show cache age, size and freshness
  clear    Delete the local cache
  info     Show configuration and tenants

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

QUICK START:

  campusfy load -t wisco
  campusfy search "comp sci 3" -t wisco
  campusfy search --topic "machine learning" -e Easy -t wisco

Use 'campusfy <command> --help' for detailed command options.
""",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _resolve_tenant(tenant: str):
    from campusfy.shared.config import get_settings
    from campusfy.shared.errors import UnknownTenantError

    settings = get_settings()
    try:
        return settings.get_tenant(tenant)
    except UnknownTenantError:
        console.print(f"[red]Unknown tenant '{tenant}'[/red]")
        console.print(f"Configured tenants: {', '.join(settings.get_tenant_ids())}")
        raise typer.Exit(1)


def _make_coordinator(schema: str, fixture: Optional[Path]):
    from campusfy.sync import CacheRefreshCoordinator, InMemoryCourseBackend, RestCourseBackend

    if fixture is not None:
        if not fixture.exists():
            console.print(f"[red]Fixture file not found: {fixture}[/red]")
            raise typer.Exit(1)
        backend = InMemoryCourseBackend.from_json_file(schema, fixture)
    else:
        backend = RestCourseBackend()
    return CacheRefreshCoordinator(backend)


def _scalar(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    try:
        number = float(raw)
    except ValueError:
        return raw.strip()
    return int(number) if number.is_integer() else number


def parse_filter(raw: str) -> tuple[str, Any]:
    """
    Parse a --filter option.

    Example:
        >>> parse_filter("breadth=Humanities,Literature")
        ('breadth', ['Humanities', 'Literature'])
        >>> parse_filter("credits=1-3")
        ('credits', [1, 3])
    """
    if "=" not in raw:
        raise typer.BadParameter(f"Filters look like key=value, got '{raw}'")
    key, value = raw.split("=", 1)
    value = value.strip()

    if "," in value:
        return key.strip(), [_scalar(part) for part in value.split(",") if part.strip()]
    if re.fullmatch(r"\d+(\.\d+)?\s*-\s*\d+(\.\d+)?", value):
        low, high = value.split("-")
        return key.strip(), [_scalar(low), _scalar(high)]
    return key.strip(), _scalar(value)


def _format_metric(value: Optional[float], digits: int = 2) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


# ─────────────────────────────────────────────────────────────────────────────
# Load Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def load(
    tenant: str = typer.Option(
        "wisco",
        "--tenant", "-t",
        help="University id or schema name.",
    ),
    fixture: Optional[Path] = typer.Option(
        None,
        "--fixture", "-f",
        help="JSON file with the catalog (list of classes or {\"classes\": [...]}).",
    ),
    background: bool = typer.Option(
        False,
        "--background", "-b",
        help="Serve the cached catalog and refresh only if it is stale.",
    ),
    sync: bool = typer.Option(
        False,
        "--sync",
        help="Fetch only courses changed since the cached snapshot.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """
    📥 Load a university's course catalog into the local cache.

    Without a cache this is a blocking cold load. With --background the cache
    is used as-is and refreshed only when it is older than the freshness
    window.

    Examples:
        campusfy load -t wisco
        campusfy load -t utah --background
        campusfy load -t wisco -f data/wisco.json
    """
    from campusfy.shared.errors import CampusfyError
    from campusfy.sync import CancelToken

    tenant_config = _resolve_tenant(tenant)
    schema = tenant_config.schema_name
    coordinator = _make_coordinator(schema, fixture)

    console.print(Panel(
        f"[bold]Load Configuration[/bold]\n"
        f"Tenant: {tenant_config.name} ({schema})\n"
        f"Source: {fixture or 'REST API'}\n"
        f"Mode: {'incremental sync' if sync else 'background' if background else 'blocking'}\n"
        f"Cache: {coordinator.store.cache_dir}",
        title="📥 Load",
    ))

    async def _run() -> int:
        token = CancelToken()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("Checking cache...", total=1.0)

            def on_progress(update) -> None:
                progress.update(task, completed=update.progress, description=update.status)

            if sync:
                records = await coordinator.sync_updates(schema, cancel_token=token)
            else:
                records = await coordinator.get_or_load_class_data(
                    schema,
                    on_progress=on_progress,
                    cancel_token=token,
                    background_mode=background,
                )
                # A CLI run cannot outlive its refresh
                if coordinator.refresh_state.for_tenant(schema).in_flight:
                    await coordinator.wait_for_refresh(schema)
            progress.update(task, completed=1.0)

        status = coordinator.status(schema)
        if status.notice:
            console.print(f"[yellow]{status.notice}[/yellow]")
        snapshot = coordinator.current_snapshot(schema)
        return snapshot.total_count if snapshot is not None else len(records)

    try:
        with LogContext("DEBUG" if verbose else None, "campusfy"):
            count = asyncio.run(_run())
    except CampusfyError as e:
        console.print(f"[red]Load failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold green]✓ {count} courses cached for {schema}[/bold green]")


# ─────────────────────────────────────────────────────────────────────────────
# Search Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def search(
    query: Optional[str] = typer.Argument(
        None,
        help="Free-text query: a course code, prefix or keywords.",
    ),
    tenant: str = typer.Option("wisco", "--tenant", "-t", help="University id."),
    topic: Optional[list[str]] = typer.Option(
        None,
        "--topic",
        help="Semantic topic (repeatable). Ignored when a query is given.",
    ),
    filters: Optional[list[str]] = typer.Option(
        None,
        "--filter",
        help="Attribute filter key=value; comma-separate values for 'any of' (repeatable).",
    ),
    experience: Optional[list[str]] = typer.Option(
        None,
        "--experience", "-e",
        help="Easy, Light Workload, Fun or High GPA (repeatable).",
    ),
    gpa: bool = typer.Option(
        False,
        "--gpa",
        help="Sort by GPA, highest first. Clears experience filters.",
    ),
    sort: Optional[str] = typer.Option(
        None,
        "--sort",
        help="Sort field: gpa, ranking_score or grade_count.",
    ),
    direction: str = typer.Option(
        "desc",
        "--direction",
        help="Sort direction when --sort is given: asc or desc.",
    ),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Result page."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1, help="Results per page."),
    fixture: Optional[Path] = typer.Option(
        None,
        "--fixture", "-f",
        help="Load the catalog from a JSON file when nothing is cached.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """
    🔍 Search the cached catalog.

    A query of two or more characters takes priority over topics and
    experience filters. Attribute filters always apply.

    Examples:
        campusfy search "comp sci 300"
        campusfy search --topic "machine learning" --topic statistics
        campusfy search -e Easy -e Fun --filter credits=3
        campusfy search --gpa --filter breadth=Humanities
    """
    from campusfy.indexing import CachedEmbeddingClient, get_embedding_provider
    from campusfy.search import HybridSearchEngine, activate_gpa_sort
    from campusfy.shared.config import get_settings
    from campusfy.shared.errors import CampusfyError
    from campusfy.shared.schemas import (
        ExperienceFilter,
        SearchQuerySpec,
        SortDirection,
        SortField,
        SortState,
    )

    settings = get_settings()
    tenant_config = _resolve_tenant(tenant)
    schema = tenant_config.schema_name

    try:
        experience_filters = [ExperienceFilter(name) for name in experience or []]
        sort_state = (
            SortState(field=SortField(sort), direction=SortDirection(direction))
            if sort
            else SortState()
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    spec = SearchQuerySpec(
        query=query or "",
        topics=topic or [],
        filters=dict(parse_filter(raw) for raw in filters or []),
        experience_filters=experience_filters,
        page=page,
        limit=limit or settings.search.page_size,
        sort=sort_state,
    )
    if gpa and not spec.sort.is_gpa_sort:
        spec = activate_gpa_sort(spec)

    coordinator = _make_coordinator(schema, fixture)

    async def _run():
        await coordinator.get_or_load_class_data(schema, background_mode=True)
        embedder = None
        if spec.has_topics:
            embedder = CachedEmbeddingClient(get_embedding_provider())
        engine = HybridSearchEngine(embedder, settings.search, tenant_config)
        return await engine.search(
            coordinator.current_snapshot(schema),
            coordinator.current_index(schema),
            spec,
        )

    try:
        with console.status("Searching courses..."), LogContext(
            "DEBUG" if verbose else None, "campusfy"
        ):
            result = asyncio.run(_run())
    except CampusfyError as e:
        console.print(f"[red]Search failed: {e}[/red]")
        raise typer.Exit(1)

    if not result.courses:
        console.print("[yellow]No courses found.[/yellow]")
        raise typer.Exit(0)

    table = Table(show_header=True, title=f"{result.total} courses in {tenant_config.name}")
    table.add_column("Code", style="cyan")
    table.add_column("Name")
    table.add_column("Credits", justify="right")
    table.add_column("GPA", justify="right")
    table.add_column("Grades", justify="right")
    table.add_column("Score", justify="right")

    for course in result.courses:
        record = course.record
        table.add_row(
            record.class_code,
            record.course_name[:45],
            str(record.credits if record.credits is not None else "-"),
            _format_metric(record.gpa),
            _format_metric(record.grade_count, 0),
            f"{course.ranking_score:.3f}",
        )

    console.print(table)
    console.print(f"[dim]Page {result.page}/{result.total_pages}[/dim]")


# ─────────────────────────────────────────────────────────────────────────────
# Course Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def course(
    class_code: str = typer.Argument(..., help="Course code, e.g. 'COMP SCI 300'."),
    tenant: str = typer.Option("wisco", "--tenant", "-t", help="University id."),
    fixture: Optional[Path] = typer.Option(None, "--fixture", "-f", help="Catalog JSON file."),
):
    """
    📘 Show one course, from the cache or the backend.

    Examples:
        campusfy course "COMP SCI 300" -t wisco
    """
    tenant_config = _resolve_tenant(tenant)
    coordinator = _make_coordinator(tenant_config.schema_name, fixture)

    record = asyncio.run(coordinator.get_class_by_code(tenant_config.schema_name, class_code))
    if record is None:
        console.print(f"[yellow]Course '{class_code}' not found.[/yellow]")
        raise typer.Exit(1)

    lines = [
        f"[bold]{record.class_code}[/bold] - {record.course_name}",
        "",
        record.course_desc or "[dim]No description[/dim]",
        "",
        f"Credits: {record.credits if record.credits is not None else '-'}",
        f"Requisites: {record.requisites or 'None'}",
        f"GPA: {_format_metric(record.gpa)}  Grades: {_format_metric(record.grade_count, 0)}",
        f"Difficulty: {_format_metric(record.indexed_difficulty)}  "
        f"Workload: {_format_metric(record.indexed_workload)}  "
        f"Fun: {_format_metric(record.indexed_fun)}",
    ]
    console.print(Panel("\n".join(lines), title="📘 Course", border_style="cyan"))


# ─────────────────────────────────────────────────────────────────────────────
# Status Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def status(
    tenant: Optional[str] = typer.Option(
        None,
        "--tenant", "-t",
        help="University id. Omit for all tenants.",
    ),
):
    """
    📊 Show the local cache state per tenant.

    Reports whether a cache exists, its size, its age and whether it is due
    for a refresh.
    """
    from datetime import timedelta

    from campusfy.shared.config import get_settings
    from campusfy.storage import LocalCacheStore

    settings = get_settings()
    tenants = [_resolve_tenant(tenant)] if tenant else settings.tenants
    store = LocalCacheStore()
    window = timedelta(hours=settings.cache.freshness_hours)

    async def _collect() -> list[tuple[str, ...]]:
        rows = []
        for tenant_config in tenants:
            schema = tenant_config.schema_name
            if not await store.has_cached_data(schema):
                rows.append((tenant_config.id, "✗", "-", "-", "-"))
                continue
            snapshot = await store.read_snapshot(schema)
            age = await store.cache_age(schema)
            stale = await store.should_refresh(schema, window)
            rows.append((
                tenant_config.id,
                "✓",
                str(snapshot.total_count) if snapshot else "?",
                f"{age.total_seconds() / 3600:.1f}h" if age is not None else "?",
                "[yellow]stale[/yellow]" if stale else "[green]fresh[/green]",
            ))
        return rows

    table = Table(title=f"Cache ({store.cache_dir})")
    table.add_column("Tenant", style="cyan")
    table.add_column("Cached", justify="center")
    table.add_column("Courses", justify="right")
    table.add_column("Age", justify="right")
    table.add_column("Freshness")

    for row in asyncio.run(_collect()):
        table.add_row(*row)
    console.print(table)


# ─────────────────────────────────────────────────────────────────────────────
# Clear Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def clear(
    tenant: str = typer.Option(..., "--tenant", "-t", help="University id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
):
    """
    🗑️ Delete a tenant's local cache.

    The next load will be a blocking cold load.
    """
    from campusfy.shared.errors import StorageError
    from campusfy.storage import LocalCacheStore

    tenant_config = _resolve_tenant(tenant)
    if not yes and not typer.confirm(f"Delete the cached catalog for {tenant_config.name}?"):
        raise typer.Exit(0)

    store = LocalCacheStore()
    try:
        removed = asyncio.run(store.clear(tenant_config.schema_name))
    except StorageError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if removed:
        console.print(f"[green]✓ Cleared cache for {tenant_config.schema_name}[/green]")
    else:
        console.print(f"[dim]No cache for {tenant_config.schema_name}[/dim]")


# ─────────────────────────────────────────────────────────────────────────────
# Info Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def info():
    """
    ℹ️ Show system information and configuration.

    Displays:
      • Version information
      • Configured tenants and their filters
      • Cache, backend and embedding settings

    Useful for debugging and verifying setup.
    """
    from campusfy import __version__
    from campusfy.shared.config import get_settings

    settings = get_settings()

    console.print(Panel(
        f"[bold]Campusfy[/bold]\n"
        f"Version: {__version__}\n"
        f"Config: config/settings.yaml",
        title="ℹ️ Info",
    ))

    console.print("\n[bold]Configured Tenants:[/bold]")
    table = Table()
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Schema")
    table.add_column("Filters")

    for tenant_config in settings.tenants:
        table.add_row(
            tenant_config.id,
            tenant_config.name,
            tenant_config.schema_name,
            ", ".join(f.key for f in tenant_config.filters),
        )
    console.print(table)

    console.print("\n[bold]Settings:[/bold]")
    console.print(f"  cache_dir: {settings.cache_dir} [{'✓' if settings.cache_dir.exists() else '✗'}]")
    console.print(f"  freshness: {settings.cache.freshness_hours}h")
    console.print(f"  backend: {settings.get_effective_api_url() or '<unset>'}")
    console.print(f"  embeddings: {settings.get_effective_embedding_provider()}")
    console.print(
        f"  topic search: top_k={settings.search.topic_top_k}, "
        f"floor={settings.search.topic_similarity_threshold}"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def cli():
    """CLI entry point."""
    from campusfy.shared.config import get_settings
    from campusfy.shared.logging import configure_from_settings

    configure_from_settings(get_settings())
    app()


if __name__ == "__main__":
    cli()
