"""Shared CLI helpers: settings overrides, cluster seeding, Rich output."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from qt_shared.config import VerifierSettings

from ..events import VerifierQueryEvent
from ..execution.duckdb_executor import DuckDBExecutor
from ..schemas import ClusterType, EventStatus

console = Console()

STATUS_COLORS = {
    EventStatus.SUCCEEDED: "green",
    EventStatus.FAILED: "red",
    EventStatus.FAILED_RESOLVED: "yellow",
    EventStatus.SKIPPED: "blue",
}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_settings(**overrides: Any) -> VerifierSettings:
    """Settings from the environment with non-None CLI options applied on top."""
    return VerifierSettings(**{k: v for k, v in overrides.items() if v is not None})


def read_sql_file(file_path: str) -> str:
    path = Path(file_path)
    if not path.exists():
        raise click.ClickException(f"File not found: {file_path}")
    return path.read_text(encoding="utf-8").strip()


def seed_clusters(executor: DuckDBExecutor, setup_sql: Optional[str]) -> None:
    """Run a setup script on both clusters, e.g. to create source tables."""
    if not setup_sql:
        return
    script = read_sql_file(setup_sql)
    for cluster in ClusterType:
        executor.execute_script(script, cluster)


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print(f"\n[bold cyan]{text}[/bold cyan]")


def print_error(text: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {text}")


def display_event(event: VerifierQueryEvent) -> None:
    color = STATUS_COLORS[event.status]
    lines = [f"Status: [bold {color}]{event.status.value}[/bold {color}]"]
    if event.skipped_reason:
        lines.append(f"Skipped reason: {event.skipped_reason.value}")
    if event.determinism_analysis:
        lines.append(f"Determinism: {event.determinism_analysis.value}")
    if event.error_code:
        lines.append(f"Error code: {event.error_code}")
    if event.resolve_message:
        lines.append(f"Resolved: {event.resolve_message}")
    console.print(Panel("\n".join(lines), title=f"{event.suite}.{event.name}", border_style=color))
    if event.error_message:
        console.print(event.error_message, markup=False, highlight=False)


def display_summary(events: Sequence[VerifierQueryEvent], total: int) -> None:
    counts: Dict[EventStatus, int] = Counter(event.status for event in events)
    table = Table(title="Verification Summary", show_header=True, header_style="bold")
    table.add_column("Status", width=16)
    table.add_column("Count", justify="right", width=8)
    for status in EventStatus:
        color = STATUS_COLORS[status]
        table.add_row(f"[{color}]{status.value}[/{color}]", str(counts.get(status, 0)))
    table.add_row("[dim]NO EVENT[/dim]", str(total - len(events)))
    console.print(table)
