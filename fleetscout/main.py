"""fleetscout CLI commands."""

import json
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from rich import print as rprint
from rich.table import Table

from fleetscout.datastore import DatastoreError, TomlDatastore
from fleetscout.integrations import integration_name, validate_integration
from fleetscout.logs import configure_logging
from fleetscout.models import AppConfig, QueuedJob
from fleetscout.providers.freescout import FreeScoutClient
from fleetscout.settings import WorkerSettings, get_settings
from fleetscout.worker import JOB_NAME, FreeScoutJob, JobError

app = typer.Typer(help="fleetscout: Fleet → FreeScout conversation worker", no_args_is_help=True)

WorkersOpt = Annotated[
    int | None,
    typer.Option("--workers", "-w", min=1, help="Worker threads (default: settings.workers)"),
]


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def get_datastore(settings: WorkerSettings) -> TomlDatastore:
    return TomlDatastore(settings.data_path, settings.jobs_path)


def get_job(settings: WorkerSettings) -> FreeScoutJob:
    configure_logging(settings.log_level, settings.log_format)
    return FreeScoutJob(
        fleet_url=settings.fleet_url or "",
        datastore=get_datastore(settings),
        client_factory=partial(FreeScoutClient, timeout=settings.http_timeout),
    )


def _read_payload(payload: str) -> str:
    """Inline JSON, @path to read a file, or - for stdin."""
    if payload == "-":
        return sys.stdin.read()
    if payload.startswith("@"):
        return Path(payload[1:]).read_text()
    return payload


def _app_config(settings: WorkerSettings) -> AppConfig:
    try:
        return get_datastore(settings).app_config()
    except DatastoreError as exc:
        rprint(f"[red]Could not read fleet state:[/red] {exc}")
        raise typer.Exit(1) from exc


def _mask(val: str | None) -> str:
    if not val:
        return "[dim](not set)[/dim]"
    if len(val) <= 5:
        return "***"
    return f"...{val[-5:]}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("run-job")
def run_job(
    payload: Annotated[str, typer.Argument(help="Job args as JSON, @file, or - for stdin")],
) -> None:
    """Run a single FreeScout job."""
    settings = get_settings()
    job = get_job(settings)
    try:
        conversation_id = job.run(_read_payload(payload))
    except (JobError, OSError) as exc:
        rprint(f"[red]Job failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    if conversation_id is None:
        rprint("[yellow]No FreeScout integration enabled for this job; nothing to do.[/yellow]")
    else:
        rprint(f"[green]✓[/green] FreeScout conversation [bold]{conversation_id}[/bold]")


@app.command("work")
def work(workers: WorkersOpt = None) -> None:
    """Run every queued FreeScout job on a thread pool."""
    settings = get_settings()
    job = get_job(settings)
    datastore = get_datastore(settings)
    try:
        pending = [q for q in datastore.pending_jobs() if q.name == JOB_NAME]
    except DatastoreError as exc:
        rprint(f"[red]Could not read job queue:[/red] {exc}")
        raise typer.Exit(1) from exc
    if not pending:
        rprint("[dim]No queued jobs.[/dim]")
        return

    table = Table(title="FreeScout Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Result")

    done: set[str] = set()
    failed = 0
    try:
        with ThreadPoolExecutor(max_workers=workers or settings.workers) as pool:
            futures = {pool.submit(job.run, json.dumps(q.args)): q for q in pending}
            for future in as_completed(futures):
                queued: QueuedJob = futures[future]
                try:
                    conversation_id = future.result()
                except JobError as exc:
                    failed += 1
                    table.add_row(queued.id, f"[red]{exc}[/red]")
                    continue
                done.add(queued.id)
                result = "skipped (integration disabled)" if conversation_id is None else f"conversation {conversation_id}"
                table.add_row(queued.id, result)
    finally:
        # Succeeded jobs leave the queue even when a later one raises.
        datastore.clear_jobs(done)
    rprint(table)
    if failed:
        rprint(f"[red]{failed} job(s) failed and remain queued.[/red]")
        raise typer.Exit(1)


@app.command("integrations")
def integrations_cmd() -> None:
    """List configured FreeScout integrations."""
    settings = get_settings(require_fleet_url=False)
    config = _app_config(settings)

    table = Table(title="FreeScout Integrations")
    table.add_column("Name", style="cyan")
    table.add_column("Customer email")
    table.add_column("Assign to")
    table.add_column("Vulnerabilities")
    table.add_column("Failing policies")
    table.add_column("API token", style="dim")

    for entry in config.integrations.freescout:
        table.add_row(
            integration_name(entry),
            entry.customer_email or "—",
            str(entry.assign_to) if entry.assign_to else "—",
            "✓" if entry.enable_software_vulnerabilities else "—",
            "✓" if entry.enable_failing_policies else "—",
            _mask(entry.api_token.get_secret_value()),
        )

    rprint(table)


@app.command("validate")
def validate() -> None:
    """Check every FreeScout integration entry; exits 1 if any is invalid."""
    settings = get_settings(require_fleet_url=False)
    config = _app_config(settings)

    if not config.integrations.freescout:
        rprint("[yellow]No FreeScout integrations configured.[/yellow]")
        return

    invalid = 0
    for entry in config.integrations.freescout:
        problems = validate_integration(entry)
        if problems:
            invalid += 1
            rprint(f"[red]✗[/red] {integration_name(entry)}")
            for problem in problems:
                rprint(f"  {problem}")
        else:
            rprint(f"[green]✓[/green] {integration_name(entry)}")

    if invalid:
        raise typer.Exit(1)


@app.command("config-show")
def config_show() -> None:
    """Show resolved worker settings."""
    settings = get_settings(require_fleet_url=False)

    table = Table(title="fleetscout Configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("fleet_url", settings.fleet_url or "[dim](not set)[/dim]")
    table.add_row("data_path", str(settings.data_path))
    table.add_row("jobs_path", str(settings.jobs_path))
    table.add_row("http_timeout", str(settings.http_timeout))
    table.add_row("workers", str(settings.workers))
    table.add_row("log_level", settings.log_level)
    table.add_row("log_format", settings.log_format)

    rprint(table)
