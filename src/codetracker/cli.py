"""Command-line interface for codetracker."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from codetracker.cache import SnapshotCache
from codetracker.errors import CodeTrackerError
from codetracker.models import ElementKey, ElementKind, History, TrackerSettings
from codetracker.tracking import Tracker

app = typer.Typer(
    name="codetracker",
    help="Reconstruct the change history of a single class, method, field, variable or block",
    add_completion=False,
)
console = Console()


def configure_logging(level: str) -> None:
    """Route structlog output to stderr, filtered at ``level``."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def parse_element(element: str, kind: ElementKind, signature: str) -> ElementKey:
    """Turn ``Outer.Inner.name`` into an ElementKey.

    Blocks are addressed by their kind tag (``if``, ``for``...) together with
    ``--line``, since their header expressions are not names.
    """
    if kind is ElementKind.BLOCK:
        return ElementKey(kind=kind, name="", signature=element)
    parts = element.split(".")
    return ElementKey(kind=kind, container=tuple(parts[:-1]), name=parts[-1], signature=signature)


def _settings(cache: Optional[Path]) -> TrackerSettings:
    settings = TrackerSettings()
    if cache is not None:
        settings = settings.model_copy(update={"cache_path": cache})
    return settings


@app.command()
def track(
    repo_path: Path = typer.Argument(..., help="Path to Git repository"),
    commit: str = typer.Argument(..., help="Commit (or reference) to start from"),
    file_path: str = typer.Argument(..., help="Repository-relative file holding the element"),
    element: str = typer.Argument(..., help="Qualified element name, e.g. Parser.parse"),
    kind: ElementKind = typer.Option(ElementKind.METHOD, "--kind", "-k", help="Element kind"),
    signature: str = typer.Option("", "--signature", "-s", help="Exact signature, to disambiguate overloads"),
    line: Optional[int] = typer.Option(None, "--line", "-l", help="A line inside the element"),
    as_json: bool = typer.Option(False, "--json", help="Print the history as JSON"),
    cache: Optional[Path] = typer.Option(None, "--cache", "-c", help="Snapshot cache file"),
) -> None:
    """Track one element back through the history of a repository."""
    settings = _settings(cache)
    configure_logging(settings.log_level)

    if kind is ElementKind.BLOCK and line is None:
        console.print("[bold red]Error:[/bold red] blocks are located by --line")
        raise typer.Exit(1)

    try:
        key = parse_element(element, kind, signature)
        with Tracker.for_repository(repo_path, settings=settings) as tracker:
            history = tracker.track(commit, file_path, key, line=line)
    except (CodeTrackerError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(history.model_dump(mode="json"), indent=2))
        return

    _print_history(history)


@app.command("cache-stats")
def cache_stats(
    cache: Optional[Path] = typer.Option(None, "--cache", "-c", help="Snapshot cache file"),
) -> None:
    """Show what a persisted snapshot cache holds."""
    settings = _settings(cache)
    configure_logging(settings.log_level)
    if settings.cache_path is None:
        console.print("[yellow]No cache configured (use --cache or CODETRACKER_CACHE_PATH)[/yellow]")
        raise typer.Exit(1)

    snapshot_cache = SnapshotCache(settings.cache_path)
    snapshot_cache.load()
    stats = snapshot_cache.stats()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    table.add_row("Path", str(stats["path"]))
    table.add_row("Snapshots", str(stats["entries"]))
    table.add_row("Schema version", str(snapshot_cache.schema_version))
    console.print(table)


@app.command("cache-clear")
def cache_clear(
    cache: Optional[Path] = typer.Option(None, "--cache", "-c", help="Snapshot cache file"),
) -> None:
    """Delete a persisted snapshot cache."""
    settings = _settings(cache)
    configure_logging(settings.log_level)
    if settings.cache_path is None:
        console.print("[yellow]No cache configured (use --cache or CODETRACKER_CACHE_PATH)[/yellow]")
        raise typer.Exit(1)

    SnapshotCache(settings.cache_path).clear()
    console.print(f"[bold green]✓[/bold green] Cleared {settings.cache_path}")


def _print_history(history: History) -> None:
    start = history.start
    console.print(f"\n[bold]History of[/bold] {start.key.describe()}")
    console.print(f"[cyan]File:[/cyan] {start.file_path}")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Commit", style="cyan", width=10)
    table.add_column("File", style="blue")
    table.add_column("Element", style="white")
    table.add_column("Lines", justify="right", style="dim")
    table.add_column("Change", style="yellow")

    # edges[i] leads from versions[i] to versions[i + 1]
    changes = ["introduced" if history.introduced_at else ""]
    for edge in history.edges:
        labels = ", ".join(sorted(op.value for op in edge.operations))
        if edge.is_ambiguous:
            labels = f"{labels} [red](ambiguous)[/red]"
        changes.append(labels)

    for version, change in reversed(list(zip(history.versions, changes))):
        lines = f"{version.source_range.start_line}-{version.source_range.end_line}"
        table.add_row(version.commit_id[:7], version.file_path, version.key.describe(), lines, change)

    console.print(table)
    console.print(f"[cyan]Termination:[/cyan] {history.termination.value}")

    if history.gaps:
        console.print(f"\n[bold yellow]Gaps ({len(history.gaps)}):[/bold yellow]")
        for gap in history.gaps:
            console.print(f"  • {gap.commit_id[:7]} {gap.file_path}: {gap.reason}")

    report = history.report
    console.print(
        f"[dim]{report.analysed_commits} commits analysed, "
        f"{report.fast_path_hits} fast-path hits, "
        f"{report.fallback_matches} fallback matches[/dim]"
    )


if __name__ == "__main__":
    app()
