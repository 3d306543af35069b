"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich table output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from convosim.services.job_models import JobSummary, SimulationJob

console = Console()

STATUS_COLORS = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def _ts(value: datetime | None) -> str:
    return value.isoformat()[:19] if value else "—"


def summary_to_dict(summary: JobSummary) -> dict[str, Any]:
    """JSON-ready form of a job summary."""
    return {
        "id": summary.id,
        "name": summary.name,
        "status": summary.status.value,
        "total": summary.total,
        "progress": summary.progress,
        "passed": summary.passed,
        "failed": summary.failed,
        "started_at": summary.started_at.isoformat(),
        "completed_at": summary.completed_at.isoformat() if summary.completed_at else None,
        "error": summary.error,
    }


def job_to_dict(job: SimulationJob) -> dict[str, Any]:
    """JSON-ready form of a job including its turn results."""
    return {
        "id": job.id,
        "name": job.name,
        "status": job.status.value,
        "agent_id": job.agent_id,
        "progress": job.progress,
        "total": job.total,
        "passed": job.passed,
        "failed": job.failed,
        "started_at": job.started_at.isoformat(),
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "error": job.error,
        "results": [r.to_dict() for r in job.results],
    }


def format_job_table(jobs: list[JobSummary], as_json: bool = False) -> str:
    """Format a list of jobs as a Rich table or JSON.

    Args:
        jobs: List of job summaries to display.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps([summary_to_dict(j) for j in jobs], indent=2)

    if not jobs:
        return "No jobs found."

    table = Table(title="Simulations", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Passed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Started")

    for job in jobs:
        status_color = STATUS_COLORS.get(job.status.value, "white")
        table.add_row(
            job.id[:12],
            job.name or "—",
            f"[{status_color}]{job.status.value}[/{status_color}]",
            f"{job.progress}/{job.total}",
            str(job.passed),
            str(job.failed),
            _ts(job.started_at),
        )

    with console.capture() as capture:
        console.print(table)
    return capture.get()


def format_job_detail(job: SimulationJob, as_json: bool = False) -> str:
    """Format a single job as a Rich panel plus a per-conversation table.

    Args:
        job: Job snapshot to display.
        as_json: If True, return JSON string instead.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(job_to_dict(job), indent=2)

    status_color = STATUS_COLORS.get(job.status.value, "white")
    lines = [
        f"[bold]Job ID:[/bold]    {job.id}",
        f"[bold]Name:[/bold]      {job.name}",
        f"[bold]Agent:[/bold]     {job.agent_id or '—'}",
        f"[bold]Status:[/bold]    [{status_color}]{job.status.value}[/{status_color}]",
        "",
        f"[bold]Progress:[/bold]  {job.progress}/{job.total} conversations",
        f"[bold]Passed:[/bold]    [green]{job.passed}[/green]",
        f"[bold]Failed:[/bold]    [red]{job.failed}[/red]",
        "",
        f"[bold]Started:[/bold]   {_ts(job.started_at)}",
        f"[bold]Ended:[/bold]     {_ts(job.ended_at)}",
    ]
    if job.error:
        lines.append("")
        lines.append(f"[bold red]Error:[/bold red] {job.error}")

    with console.capture() as capture:
        console.print(Panel("\n".join(lines), title="Simulation", border_style="cyan"))
        if job.conversations:
            console.print(format_conversation_table(job))
    return capture.get()


def format_conversation_table(job: SimulationJob) -> Table:
    """Per-conversation outcome table."""
    table = Table(title="Conversations")
    table.add_column("Conversation", style="cyan")
    table.add_column("Turns", justify="right")
    table.add_column("Result")
    table.add_column("Time (ms)", justify="right")
    for record in job.conversations:
        result = "[green]PASSED[/green]" if record.overall_passed else "[red]FAILED[/red]"
        table.add_row(
            record.conversation_id,
            str(len(record.turns)),
            result,
            str(record.execution_time_ms),
        )
    return table
