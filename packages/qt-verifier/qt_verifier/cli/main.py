"""QueryTorque verifier CLI.

Commands:
    qt-verify verify <control.sql> <test.sql>   Verify one query pair
    qt-verify run <suite.json>                  Verify a suite on a worker pool
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from ..events import JsonEventClient
from ..execution.duckdb_executor import DuckDBExecutor
from ..manager import VerificationManager, load_source_queries
from ..schemas import EventStatus, SourceQuery
from ._common import (
    build_settings,
    configure_logging,
    console,
    display_event,
    display_summary,
    print_error,
    print_header,
    read_sql_file,
    seed_clusters,
)

logger = logging.getLogger(__name__)

cluster_options = [
    click.option("--control-db", default=None, help="Control DuckDB database (default :memory:)"),
    click.option("--test-db", default=None, help="Test DuckDB database (default :memory:)"),
    click.option("--setup-sql", type=click.Path(exists=True), default=None,
                 help="SQL script run on both clusters before verifying"),
    click.option("--verbose", "-v", is_flag=True, help="Enable debug logging"),
]


def with_cluster_options(func):
    for option in reversed(cluster_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="qt-verify")
def cli():
    """QueryTorque Verifier - control/test query result verification."""
    pass


@cli.command()
@click.argument("control_sql", type=click.Path(exists=True))
@click.argument("test_sql", type=click.Path(exists=True))
@click.option("--suite", default="adhoc", help="Suite name reported on the event")
@click.option("--name", default=None, help="Query name (default: control file name)")
@click.option("--json", "output_json", is_flag=True, help="Output the event as JSON")
@with_cluster_options
def verify(
    control_sql: str,
    test_sql: str,
    suite: str,
    name: Optional[str],
    output_json: bool,
    control_db: Optional[str],
    test_db: Optional[str],
    setup_sql: Optional[str],
    verbose: bool,
) -> None:
    """Verify that CONTROL_SQL and TEST_SQL produce equivalent results."""
    configure_logging(verbose)
    settings = build_settings(control_database=control_db, test_database=test_db)
    source_query = SourceQuery(
        suite=suite,
        name=name or Path(control_sql).stem,
        control_query=read_sql_file(control_sql),
        test_query=read_sql_file(test_sql),
    )

    with DuckDBExecutor.from_settings(settings) as executor:
        seed_clusters(executor, setup_sql)
        event = VerificationManager(executor, settings).verify(source_query)

    if event is None:
        print_error("Query could not be parsed; no event produced")
        sys.exit(2)

    if output_json:
        click.echo(event.to_json())
    else:
        display_event(event)

    if event.status == EventStatus.FAILED:
        sys.exit(1)


@cli.command()
@click.argument("suite_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), default=None,
              help="Append events as JSON lines to this file")
@click.option("--workers", "-w", type=int, default=None, help="Concurrent verifications")
@click.option("--test-id", default=None, help="Identifier of this verifier run")
@with_cluster_options
def run(
    suite_file: str,
    output: Optional[str],
    workers: Optional[int],
    test_id: Optional[str],
    control_db: Optional[str],
    test_db: Optional[str],
    setup_sql: Optional[str],
    verbose: bool,
) -> None:
    """Verify every query pair in SUITE_FILE."""
    configure_logging(verbose)
    settings = build_settings(
        control_database=control_db,
        test_database=test_db,
        max_concurrency=workers,
        test_id=test_id,
    )
    try:
        source_queries = load_source_queries(suite_file)
    except ValueError as e:
        raise click.ClickException(str(e))

    print_header(f"Verifying {len(source_queries)} queries from {suite_file}")
    clients = [JsonEventClient(output)] if output else []
    try:
        with DuckDBExecutor.from_settings(settings) as executor:
            seed_clusters(executor, setup_sql)
            events = VerificationManager(executor, settings, clients).run(source_queries)
    finally:
        for client in clients:
            client.close()

    for event in events:
        display_event(event)
    display_summary(events, len(source_queries))
    if output:
        console.print(f"[dim]Events written to {output}[/dim]")

    if any(event.status == EventStatus.FAILED for event in events):
        sys.exit(1)


if __name__ == "__main__":
    cli()
