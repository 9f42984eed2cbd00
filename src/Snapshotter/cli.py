# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.cli",
#   "purpose": "Typer CLI: scheduled service, single runs, API server, catalog inspection",
#   "sections": [
#     {
#       "id": "clicontext",
#       "name": "CliContext",
#       "anchor": "class-clicontext",
#       "kind": "class"
#     },
#     {
#       "id": "main",
#       "name": "main",
#       "anchor": "function-main",
#       "kind": "function"
#     },
#     {
#       "id": "start",
#       "name": "start",
#       "anchor": "function-start",
#       "kind": "function"
#     },
#     {
#       "id": "run-once",
#       "name": "run_once",
#       "anchor": "function-run-once",
#       "kind": "function"
#     },
#     {
#       "id": "serve-cmd",
#       "name": "serve_cmd",
#       "anchor": "function-serve-cmd",
#       "kind": "function"
#     },
#     {
#       "id": "catalog-cmd",
#       "name": "catalog_cmd",
#       "anchor": "function-catalog-cmd",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Command line entry point.

Commands:
    start     Run the cron scheduler and the distribution API together
    run-once  Execute one publication run now (exit code 1 on failure)
    serve     Run the distribution API only
    catalog   Print the current catalog document as JSON

Example:
    $ snapshotter --config snapshotter.yaml run-once
"""

from __future__ import annotations

import json
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from . import __version__
from .api import serve
from .cancellation import CancellationToken
from .categories import Category
from .distribution import DistributionService
from .errors import ConfigError, SnapshotterError
from .lifecycle import ComposeServiceController, NullServiceController, ServiceController
from .logging_config import setup_logging
from .pipeline import PipelineReport, run_publication
from .scheduler import CronScheduler
from .settings import SnapshotterSettings, build_run_configuration, load_settings
from .storage import build_remote_store

_console = Console()


class CliContext:
    """Settings and console shared by the commands of one invocation."""

    def __init__(self, settings: SnapshotterSettings, console: Console = _console) -> None:
        self.settings = settings
        self.console = console

    def controller(self) -> ServiceController:
        compose_file = self.settings.service.compose_file
        if compose_file is None:
            return NullServiceController()
        return ComposeServiceController(compose_file)

    def distribution(self) -> DistributionService:
        catalog = self.settings.catalog
        return DistributionService(
            catalog.artifact_dir, catalog_path=catalog.artifact_dir / catalog.document_name
        )


app = typer.Typer(
    name="snapshotter",
    help="Archive node data, publish it to object storage, and serve the catalog",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _fail(message: str, code: int = 2) -> typer.Exit:
    _console.print(f"[red]Error: {message}[/red]")
    return typer.Exit(code)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"snapshotter {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SNAPSHOTTER_CONFIG",
        help="Path to a YAML configuration file",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override the configured log level"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Snapshotter - periodic node data snapshots with resumable uploads."""

    global _context

    try:
        settings = load_settings(config)
        if log_level:
            settings.logging.level = log_level
    except (ConfigError, ValueError) as exc:
        raise _fail(str(exc))
    _context = CliContext(settings)


def _run_once(
    ctx: CliContext,
    token: Optional[CancellationToken] = None,
    now: Optional[datetime] = None,
) -> PipelineReport:
    run_config = build_run_configuration(ctx.settings)
    store = build_remote_store(
        ctx.settings.storage, max_connections=run_config.max_concurrent_uploads
    )
    try:
        return run_publication(
            run_config,
            now or datetime.now(timezone.utc),
            store=store,
            controller=ctx.controller(),
            token=token,
        )
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()


def _print_report(console: Console, report: PipelineReport) -> None:
    if report.skipped:
        console.print("[yellow]Another run is active; nothing done[/yellow]")
        return
    for outcome in report.recovered:
        if outcome.ok:
            console.print(f"[green]✓[/green] {outcome.category.value}: {outcome.artifact} (resumed)")
        else:
            console.print(f"[red]✗[/red] {outcome.failure}")
    for outcome in report.outcomes:
        if outcome.ok:
            note = " (already uploaded)" if outcome.upload_skipped else ""
            console.print(f"[green]✓[/green] {outcome.category.value}: {outcome.artifact}{note}")
            for name in outcome.evicted:
                console.print(f"  evicted {name}")
        else:
            console.print(f"[red]✗[/red] {outcome.failure}")
    if report.resume_error:
        console.print(f"[red]Service was not resumed: {report.resume_error}[/red]")


@app.command("run-once")
def run_once() -> None:
    """Archive, upload, and catalog every configured category once."""

    ctx = get_context()
    setup_logging(ctx.settings.logging)
    try:
        report = _run_once(ctx)
    except ConfigError as exc:
        raise _fail(str(exc))
    except SnapshotterError as exc:
        raise _fail(str(exc), code=1)
    _print_report(ctx.console, report)
    if not report.success:
        raise typer.Exit(1)


@app.command("serve")
def serve_cmd(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
) -> None:
    """Serve the catalog and artifacts over HTTP."""

    ctx = get_context()
    setup_logging(ctx.settings.logging)
    api = ctx.settings.api
    serve(
        ctx.distribution(),
        host=host or api.host,
        port=port or api.port,
        timeout=api.timeout_sec,
    )


@app.command()
def start(
    no_api: bool = typer.Option(False, "--no-api", help="Do not start the HTTP API"),
) -> None:
    """Run publications on the configured cron schedule until interrupted."""

    ctx = get_context()
    setup_logging(ctx.settings.logging)
    cron = ctx.settings.schedule.cron
    if not cron:
        raise _fail("schedule.cron (or CRON_JOB_TIME) is required")
    try:
        build_run_configuration(ctx.settings)
        token = CancellationToken()
        scheduler = CronScheduler(
            cron, lambda fire_time: _run_once(ctx, token, fire_time), token=token
        )
    except ConfigError as exc:
        raise _fail(str(exc))

    def _shutdown(signum, _frame) -> None:
        ctx.console.print(f"[yellow]Received signal {signum}; stopping[/yellow]")
        token.cancel()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    if not no_api:
        api = ctx.settings.api
        threading.Thread(
            target=serve,
            args=(ctx.distribution(),),
            kwargs={"host": api.host, "port": api.port, "timeout": api.timeout_sec},
            name="snapshot-api",
            daemon=True,
        ).start()

    scheduler.run_forever()


@app.command("catalog")
def catalog_cmd(
    category: Optional[str] = typer.Option(None, "--category", help="Only list this category"),
) -> None:
    """Print the catalog document as JSON."""

    ctx = get_context()
    catalog = ctx.distribution().list()
    if category is None:
        document = catalog.to_document()
    else:
        try:
            selected = Category.parse(category)
        except ValueError as exc:
            raise _fail(str(exc))
        document = {"entries": [record.to_document() for record in catalog.for_category(selected)]}
    typer.echo(json.dumps(document, indent=2))


__all__ = ["app", "CliContext", "get_context", "main"]
