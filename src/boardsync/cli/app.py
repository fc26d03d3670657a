"""
Root Typer application for the ``boardsync`` command.

Commands:
    run     start the sync process (Ctrl-C / SIGTERM to stop)
    once    run a single cycle; exit 0 when it succeeded, 1 otherwise
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from boardsync import __version__
from boardsync.core.errors import BoardSyncError
from boardsync.core.logging import configure_logging
from boardsync.core.settings import SyncSettings, load_settings
from boardsync.sync.models import CycleReport
from boardsync.sync.service import SyncService

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="boardsync",
    help="boardsync: mirror board suggestions and comments into the search index.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"boardsync {__version__}")
        raise typer.Exit()


@app.callback()
def root(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """boardsync CLI: run the search index sync."""


def _load(log_level: str | None, json_logs: bool | None) -> SyncSettings:
    try:
        settings = load_settings()
    except BoardSyncError as exc:
        err_console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    configure_logging(
        level=log_level or settings.log_level,
        json_format=json_logs if json_logs is not None else settings.log_json,
    )
    return settings


def _print_report(report: CycleReport) -> None:
    table = Table(title=f"Cycle {report.cycle_id}")
    table.add_column("Record type")
    table.add_column("Collection")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Upserted", justify="right")
    table.add_column("Failed", justify="right")
    for r in report.records:
        table.add_row(
            r.record_type.value,
            r.collection,
            str(r.updated),
            str(r.deleted),
            str(r.rejected),
            str(r.upserted),
            str(r.failed_writes if r.read_ok else "read failed"),
        )
    console.print(table)

    colour = "green" if report.succeeded else "red"
    outcome = report.outcome.value if report.outcome else "skipped"
    console.print(
        f"[bold {colour}]{outcome}[/bold {colour}]  "
        f"watermark {report.watermark_before} → {report.watermark_after}"
    )
    if report.error:
        console.print(f"[red]{report.error.get('message')}[/red]")


@app.command("run")
def run(
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override LOG_LEVEL"),  # noqa: UP007
    json_logs: bool | None = typer.Option(None, "--json/--console", help="Log format"),  # noqa: UP007
) -> None:
    """Start the sync process: ensure collections, sync now, then every interval.

    Example::

        boardsync run
        POLLING_INTERVAL_MS=5000 boardsync run --log-level DEBUG
    """
    settings = _load(log_level, json_logs)
    console.print(
        f"[bold green]Starting boardsync[/bold green] "
        f"(interval={settings.polling_interval_ms}ms, batch={settings.upsert_batch_size})"
    )
    try:
        asyncio.run(SyncService.from_settings(settings).run_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]boardsync stopped by user[/yellow]")
    except BoardSyncError as exc:
        err_console.print(f"[red]boardsync error: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc


@app.command("once")
def once(
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override LOG_LEVEL"),  # noqa: UP007
    json_logs: bool | None = typer.Option(None, "--json/--console", help="Log format"),  # noqa: UP007
) -> None:
    """Run exactly one sync cycle and exit with its outcome."""
    settings = _load(log_level, json_logs)
    try:
        report = asyncio.run(SyncService.from_settings(settings).run_once())
    except BoardSyncError as exc:
        err_console.print(f"[red]boardsync error: {exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    if report is None:
        err_console.print("[yellow]boardsync is disabled: index or database not configured[/yellow]")
        raise typer.Exit(code=1)

    _print_report(report)
    if not report.succeeded:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
