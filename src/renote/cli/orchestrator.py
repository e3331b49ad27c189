"""CLI commands for job queue inspection and administration."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from renote.orchestrator.config import ConfigurationError, ConfigurationManager
from renote.orchestrator.dispatcher import JobDispatcher
from renote.orchestrator.exceptions import InvalidStateTransitionError, JobNotFoundError
from renote.orchestrator.handlers import JobHandlerRegistry
from renote.orchestrator.models import JobStatus, JobType, TriggerType
from renote.orchestrator.queue import JobQueue
from renote.orchestrator.status import collect_status_report

console = Console()
orchestrator_app = typer.Typer(help="Job queue management commands")

STATUS_STYLES = {
    JobStatus.CREATED.value: "cyan",
    JobStatus.RETRY.value: "yellow",
    JobStatus.ACTIVE.value: "blue",
    JobStatus.COMPLETED.value: "green",
    JobStatus.FAILED.value: "red",
    JobStatus.CANCELLED.value: "dim",
}


def _database_path(db: Optional[Path], config_path: Optional[Path]) -> Path:
    """Job store path from the option or the configuration file."""
    if db:
        return Path(db).expanduser()
    try:
        config = ConfigurationManager(config_path=config_path).load()
    except ConfigurationError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    return config.queue.database_path


def _open_queue(db: Optional[Path], config_path: Optional[Path]) -> JobQueue:
    return JobQueue(_database_path(db, config_path))


def _dispatcher(queue: JobQueue) -> JobDispatcher:
    # Administrative use only; the poll loop is never started here.
    return JobDispatcher(queue, JobHandlerRegistry(), recover_on_start=False)


def _format_timestamp(value: Optional[str]) -> str:
    if not value:
        return "never"
    try:
        delta = datetime.now(timezone.utc) - datetime.fromisoformat(value)
    except ValueError:
        return value
    seconds = delta.total_seconds()
    if seconds < 0:
        return f"in {_format_duration(-seconds)}"
    return f"{_format_duration(seconds)} ago"


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    if seconds < 86400:
        return f"{seconds / 3600:.1f}h"
    return f"{seconds / 86400:.1f}d"


def _echo_structured(data: object, format_output: str) -> None:
    if format_output == "json":
        typer.echo(json.dumps(data, indent=2, default=str))
    else:
        typer.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


db_option = typer.Option(None, "--db", help="Job store database path")
config_option = typer.Option(None, "--config", help="Orchestrator configuration file")
format_option = typer.Option("table", "--format", help="Output format: table, json, or yaml")


@orchestrator_app.command("status")
def status_command(
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    owner: Optional[str] = typer.Option(None, "--owner", help="Restrict to one workspace user"),
    format_output: str = format_option,
) -> None:
    """Show job counts by status and the most recent jobs."""
    report = collect_status_report(database_path=_database_path(db, config_path), owner_id=owner)
    if format_output != "table":
        _echo_structured(report, format_output)
        return

    queue = report["queue"]
    lines = ["[bold cyan]Queue[/bold cyan]"]
    for status in JobStatus:
        lines.append(f"  {status.value.capitalize():<12} {queue[status.value]:>5} jobs")
    lines.append(f"  {'Completed':<12} {queue['completed_24h']:>5} jobs (last 24h)")
    lines.append(f"  {'Failed':<12} {queue['failed_24h']:>5} jobs (last 24h)")
    lines.append("")
    lines.append(f"[bold cyan]Next retry[/bold cyan]  {_format_timestamp(report['next_retry_at'])}")
    console.print(Panel("\n".join(lines), title="[bold]Job Queue Status[/bold]", border_style="blue"))


@orchestrator_app.command("jobs")
def jobs_command(
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    status: Optional[str] = typer.Option(None, "--status", help="Filter by status"),
    job_type: Optional[str] = typer.Option(None, "--job-type", help="Filter by job type"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Filter by workspace user"),
    entity: Optional[str] = typer.Option(None, "--entity", help="Filter by entity id"),
    limit: int = typer.Option(20, "--limit", help="Limit results (default: 20)"),
    format_output: str = format_option,
) -> None:
    """List jobs, newest first."""
    try:
        statuses = [JobStatus(status.lower())] if status else None
        type_filter = JobType(job_type) if job_type else None
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        console.print(f"Valid statuses: {', '.join(s.value for s in JobStatus)}")
        console.print(f"Valid job types: {', '.join(t.value for t in JobType)}")
        raise typer.Exit(1)

    queue = _open_queue(db, config_path)
    try:
        jobs = _dispatcher(queue).list_jobs(
            owner_id=owner,
            job_type=type_filter,
            entity_ids=[entity] if entity else None,
            statuses=statuses,
            limit=limit,
        )
    finally:
        queue.close()

    if format_output != "table":
        _echo_structured([job.to_dict() for job in jobs], format_output)
        return

    if not jobs:
        console.print("[yellow]No jobs found matching criteria[/yellow]")
        return

    table = Table(title=f"Jobs ({len(jobs)})")
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Trigger")
    table.add_column("Retries", justify="right")
    table.add_column("Created")
    for job in jobs:
        style = STATUS_STYLES.get(job.status.value, "white")
        table.add_row(
            job.job_id[:8],
            job.job_type_value,
            f"[{style}]{job.status.value}[/{style}]",
            str(job.priority),
            job.trigger_type.value,
            f"{job.retry_count}/{job.max_retries}",
            _format_timestamp(job.created_at.isoformat() if job.created_at else None),
        )
    console.print(table)


@orchestrator_app.command("show")
def show_command(
    job_id: str = typer.Argument(..., help="Job ID"),
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    format_output: str = format_option,
) -> None:
    """Show the full record of one job."""
    queue = _open_queue(db, config_path)
    try:
        job = _dispatcher(queue).get_status(job_id)
    except JobNotFoundError:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)
    finally:
        queue.close()

    data = job.to_dict()
    if format_output != "table":
        _echo_structured(data, format_output)
        return

    content = "\n".join(
        f"[bold]{key}:[/bold] {json.dumps(value, default=str) if isinstance(value, (dict, list)) else value}"
        for key, value in data.items()
    )
    console.print(Panel(content, title=f"Job Details: {job_id[:8]}", border_style="green"))


@orchestrator_app.command("cancel")
def cancel_command(
    job_id: str = typer.Argument(..., help="Job ID"),
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    reason: Optional[str] = typer.Option(None, "--reason", help="Reason stored on the job"),
) -> None:
    """Cancel a created, retrying or active job."""
    queue = _open_queue(db, config_path)
    try:
        _dispatcher(queue).cancel(job_id, reason=reason)
    except JobNotFoundError:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)
    except InvalidStateTransitionError as exc:
        console.print(f"[red]Cannot cancel job: {exc}[/red]")
        raise typer.Exit(1)
    finally:
        queue.close()
    console.print(f"[green]✓ Job {job_id} cancelled[/green]")


@orchestrator_app.command("clear")
def clear_command(
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    owner: Optional[str] = typer.Option(None, "--owner", help="Only jobs of this workspace user"),
    entity: Optional[List[str]] = typer.Option(None, "--entity", help="Only jobs for these entity ids"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Cancel every pending job."""
    if not yes:
        scope = f"owner {owner}" if owner else "all owners"
        typer.confirm(f"Cancel all pending jobs for {scope}?", abort=True)

    queue = _open_queue(db, config_path)
    try:
        cleared = _dispatcher(queue).clear_pending(owner_id=owner, entity_ids=entity or None)
    finally:
        queue.close()
    console.print(f"[green]✓ Cleared {cleared} pending jobs[/green]")


@orchestrator_app.command("enqueue")
def enqueue_command(
    job_type: str = typer.Argument(..., help="Job type"),
    db: Optional[Path] = db_option,
    config_path: Optional[Path] = config_option,
    entity: Optional[str] = typer.Option(None, "--entity", help="Entity id"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Workspace user"),
    trigger: Optional[str] = typer.Option(None, "--trigger", help="Trigger origin: user, scheduled, bulk"),
    priority: Optional[int] = typer.Option(None, "--priority", help="Priority 1 (urgent) to 10"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Retry budget"),
    payload_json: Optional[str] = typer.Option(None, "--payload", help="Extra payload as a JSON object"),
) -> None:
    """Queue a job for a running dispatcher to pick up."""
    try:
        payload = json.loads(payload_json) if payload_json else {}
    except json.JSONDecodeError as exc:
        console.print(f"[red]Invalid payload JSON: {exc}[/red]")
        raise typer.Exit(1)
    if not isinstance(payload, dict):
        console.print("[red]Payload must be a JSON object[/red]")
        raise typer.Exit(1)
    for key, value in (("entity_id", entity), ("account_id", account), ("owner_id", owner)):
        if value:
            payload[key] = value

    queue = _open_queue(db, config_path)
    try:
        job_id = _dispatcher(queue).enqueue(
            JobType(job_type),
            payload,
            priority=priority,
            trigger_type=TriggerType(trigger) if trigger else None,
            max_retries=max_retries,
        )
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    finally:
        queue.close()
    console.print(f"[green]✓ Enqueued {job_type} job {job_id}[/green]")
