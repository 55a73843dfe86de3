"""
sqlagent CLI

Command-line interface for asking questions of a database.

Usage:
    sqlagent ask "How many customers are there?"   # Single question
    sqlagent ask "..." --database-url sqlite:///shop.db
    sqlagent check                                 # Test the database connection
    sqlagent reindex                               # Drop and rebuild the schema index
"""

import asyncio
import logging
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sqlagent.config import get_settings
from sqlagent.connectors.factory import create_introspector, effective_database_type
from sqlagent.models.errors import AgentError
from sqlagent.models.query import AgentResponse
from sqlagent.pipeline.orchestrator import QueryOrchestrator

console = Console()


def configure_cli_logging(verbose: bool) -> None:
    if verbose:
        get_settings().logging.configure()
        return
    logging.basicConfig(level=logging.CRITICAL, force=True)
    for logger_name in ("sqlagent", "httpx", "openai", "chromadb", "google", "grpc"):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


def print_response(response: AgentResponse, max_rows: int = 20) -> None:
    """Render an AgentResponse: answer, SQL, rows, steps and corrections."""
    if response.success:
        console.print(Panel(response.answer, title="[bold green]Answer[/bold green]"))
    elif response.answer:
        console.print(Panel(response.answer, title="[bold yellow]Clarification needed[/bold yellow]"))
    else:
        console.print(
            Panel(response.error_message or "Unknown error", title="[bold red]Error[/bold red]")
        )

    if response.sql_generated:
        console.print(Panel(response.sql_generated, title="SQL", border_style="cyan", highlight=True))

    result = response.execution_result
    if result is not None and result.success and result.rows:
        console.print(_rows_table(result.columns, result.rows, max_rows))

    if response.correction_history:
        corrections = Table(title="Corrections", show_header=True, header_style="bold cyan")
        corrections.add_column("#")
        corrections.add_column("Error")
        corrections.add_column("Corrected SQL")
        for attempt in response.correction_history:
            corrections.add_row(
                str(attempt.attempt_number),
                attempt.error.type.value,
                attempt.corrected_sql or "[dim](none)[/dim]",
            )
        console.print(corrections)

    if response.processing_steps:
        console.print("[dim]Steps: " + " -> ".join(response.processing_steps) + "[/dim]")


def _rows_table(columns: list[str], rows: list[dict[str, Any]], max_rows: int) -> Table:
    names = columns or list(rows[0].keys())
    table = Table(show_header=True, header_style="bold cyan")
    for name in names:
        table.add_column(name)
    for row in rows[:max_rows]:
        table.add_row(*["NULL" if row.get(name) is None else str(row.get(name)) for name in names])
    if len(rows) > max_rows:
        table.caption = f"{max_rows} of {len(rows)} rows shown"
    return table


@click.group()
@click.version_option(version="0.1.0", prog_name="sqlagent")
@click.option("--verbose", "-v", is_flag=True, help="Show application logs.")
def cli(verbose: bool):
    """sqlagent - ask questions of a relational database in natural language."""
    configure_cli_logging(verbose)


@cli.command()
@click.argument("question")
@click.option("--database-url", default=None, help="Override DATABASE_URL for this run.")
@click.option("--max-rows", default=20, show_default=True, type=int, help="Rows to display.")
def ask(question: str, database_url: str | None, max_rows: int):
    """Ask a single question and exit."""

    async def run_query() -> AgentResponse:
        orchestrator = QueryOrchestrator.from_settings(database_url=database_url)
        with console.status("[cyan]Processing query...[/cyan]", spinner="dots"):
            return await orchestrator.process_query(question)

    try:
        response = asyncio.run(run_query())
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise SystemExit(2) from e

    print_response(response, max_rows=max_rows)
    if not response.success:
        raise SystemExit(1)


@cli.command()
@click.option("--database-url", default=None, help="Override DATABASE_URL for this run.")
def check(database_url: str | None):
    """Test the database connection."""
    settings = get_settings()
    url = database_url or settings.database.url
    if not url:
        console.print("[red]No target database configured (set DATABASE_URL).[/red]")
        raise SystemExit(2)

    introspector = create_introspector(
        database_url=url,
        database_type=effective_database_type(url, settings.database.db_type),
        timeout=settings.database.command_timeout,
    )
    ok = asyncio.run(introspector.test_connection())

    table = Table(title="sqlagent Status", show_header=True, header_style="bold cyan")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    table.add_row("Configuration", "ok", f"Environment: {settings.environment}")
    table.add_row(
        "Database",
        "[green]ok[/green]" if ok else "[red]failed[/red]",
        f"{introspector.dialect}: {introspector!r}",
    )
    console.print(table)
    if not ok:
        raise SystemExit(1)


@cli.command()
@click.option("--database-url", default=None, help="Override DATABASE_URL for this run.")
def reindex(database_url: str | None):
    """Drop the schema index and rebuild it from a fresh scan."""

    async def run_reindex() -> int:
        orchestrator = QueryOrchestrator.from_settings(database_url=database_url)
        return await orchestrator.rebuild_index()

    try:
        written = asyncio.run(run_reindex())
    except (ValueError, AgentError) as e:
        console.print(f"[red]Reindex failed: {e}[/red]")
        raise SystemExit(1) from e
    console.print(f"[green]Indexed {written} schema documents.[/green]")


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
