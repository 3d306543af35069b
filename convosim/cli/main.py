"""ConvoSim CLI: run bulk simulations and inspect their results.

Usage:
    convosim run conversations.csv   Replay a CSV against the agent
    convosim jobs list               List all simulation jobs
    convosim jobs show <id>          Show one job with its conversations
    convosim report <id>             Export a job's CSV report
    convosim serve                   Start the HTTP API
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer
from rich.console import Console

from convosim.cli.config import load_config
from convosim.cli.output import format_job_detail, format_job_table
from convosim.errors import ConvoSimError, format_error

_log = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    name="convosim",
    help="Bulk conversation simulation for Dialogflow CX agents",
    no_args_is_help=True,
)
jobs_app = typer.Typer(help="Inspect simulation jobs")
app.add_typer(jobs_app, name="jobs")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to convosim.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """ConvoSim CLI: bulk conversation simulation."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _open_store():
    """Store over the configured database with an empty live registry."""
    from convosim.db.connection import AsyncSessionLocal
    from convosim.services.job_store import (
        DurableJobStore,
        LiveJobRegistry,
        SimulationJobStore,
    )

    return SimulationJobStore(LiveJobRegistry(), DurableJobStore(AsyncSessionLocal))


def _run_with_db(fn: Callable[[], Awaitable[T]]) -> T:
    """Run ``fn`` on a fresh event loop with the schema in place."""
    from convosim.db.connection import async_init_db, close_async_db
    from convosim.utils.paths import ensure_dirs_exist

    async def _wrapped() -> T:
        ensure_dirs_exist()
        await async_init_db()
        try:
            return await fn()
        finally:
            await close_async_db()

    return asyncio.run(_wrapped())


def _fail(error: ConvoSimError) -> NoReturn:
    console.print(f"[red]{format_error(error)}[/red]")
    raise typer.Exit(1)


# --- Version ---


@app.command()
def version():
    """Show ConvoSim version."""
    from importlib.metadata import version as pkg_version

    try:
        v = pkg_version("convosim")
    except Exception:
        v = "unknown"
    console.print(f"[bold]ConvoSim[/bold] v{v}")


# --- Run ---


@app.command()
def run(
    csv_file: Path = typer.Argument(help="CSV file of conversations to replay"),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", help="Max conversations in flight"
    ),
    name: Optional[str] = typer.Option(None, "--name", help="Job display name"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Replay every conversation in a CSV and wait for the result."""
    from convosim.cli.factory import build_client, build_service
    from convosim.db.connection import AsyncSessionLocal

    if not csv_file.exists():
        console.print(f"[red]File not found:[/red] {csv_file}")
        raise typer.Exit(1)
    if concurrency is not None and concurrency < 1:
        console.print("[red]--concurrency must be at least 1[/red]")
        raise typer.Exit(1)

    cfg = load_config(config_path=_config_path)
    csv_text = csv_file.read_text(encoding="utf-8-sig")

    async def _simulate():
        async with build_client(cfg) as client:
            service = build_service(
                cfg, AsyncSessionLocal, client, max_concurrency=concurrency
            )
            job_id = await service.create_job(csv_text, name=name)
            with console.status(f"Simulating job {job_id}..."):
                await service.wait_for(job_id)
            return await service.get_job(job_id)

    try:
        job = _run_with_db(_simulate)
    except ConvoSimError as e:
        _fail(e)

    console.print(format_job_detail(job, as_json=json_output))
    if job.status.value == "failed":
        raise typer.Exit(1)


# --- Job commands ---


@jobs_app.command("list")
def jobs_list(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max jobs to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List simulation jobs, most recent first."""
    try:
        jobs = _run_with_db(lambda: _open_store().list_summaries(limit))
    except ConvoSimError as e:
        _fail(e)
    console.print(format_job_table(jobs, as_json=json_output))


@jobs_app.command("show")
def jobs_show(
    job_id: str = typer.Argument(help="Job ID to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one job with its per-conversation outcomes."""
    try:
        job = _run_with_db(lambda: _open_store().get(job_id))
    except ConvoSimError as e:
        _fail(e)
    if job is None:
        console.print(f"[red]Job not found:[/red] {job_id}")
        raise typer.Exit(1)
    console.print(format_job_detail(job, as_json=json_output))


# --- Report ---


@app.command()
def report(
    job_id: str = typer.Argument(help="Job ID to export"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV path"),
):
    """Export a job's turn results as a CSV report."""
    from convosim.services.report import report_filename, write_report
    from convosim.utils.paths import get_reports_dir

    try:
        job = _run_with_db(lambda: _open_store().get(job_id))
    except ConvoSimError as e:
        _fail(e)
    if job is None:
        console.print(f"[red]Job not found:[/red] {job_id}")
        raise typer.Exit(1)

    path = write_report(job, output or get_reports_dir() / report_filename(job.id))
    console.print(f"[green]Report written:[/green] {path} ({len(job.results)} turns)")


# --- Serve ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the HTTP API with uvicorn."""
    import uvicorn

    cfg = load_config(config_path=_config_path)
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # The API lifespan loads the same config as the CLI
    if _config_path:
        os.environ["CONVOSIM_CONFIG_PATH"] = str(_config_path)

    console.print(f"[bold]Starting ConvoSim API on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "convosim.api.main:app",
        host=final_host,
        port=final_port,
        log_level=cfg.server.log_level,
    )


if __name__ == "__main__":
    app()
