"""CSV report of a simulation job's turn results."""

import csv
import io
import re
from collections.abc import Iterable
from pathlib import Path

from convosim.services.job_models import SimulationJob, TurnResult

REPORT_FIELDS = [
    "conversationId",
    "turnNumber",
    "userInput",
    "agentResponse",
    "intent",
    "confidence",
    "page",
    "error",
    "timestamp",
]

_DIGITS = re.compile(r"(\d+)")


def natural_key(value: str) -> tuple:
    """Sort key that orders embedded numbers numerically (conv_2 < conv_10)."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part.casefold())
        for part in _DIGITS.split(value)
        if part
    )


def sort_results(results: Iterable[TurnResult]) -> list[TurnResult]:
    """Order by conversation id (natural order), then turn number."""
    return sorted(
        results, key=lambda r: (natural_key(r.conversation_id), r.turn_number)
    )


def report_filename(job_id: str) -> str:
    return f"simulation_report_{job_id}.csv"


def render_report(job: SimulationJob) -> str:
    """Render the job's turn results as CSV text with a header row.

    Args:
        job: Live or durable job snapshot.

    Returns:
        CSV text. A job without results yields only the header.
    """
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=REPORT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for result in sort_results(job.results):
        row = result.to_dict()
        writer.writerow({field: _cell(row.get(field)) for field in REPORT_FIELDS})
    return buffer.getvalue()


def write_report(job: SimulationJob, path: Path) -> Path:
    """Write the CSV report to ``path``, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(job), encoding="utf-8")
    return path


def _cell(value: object) -> str:
    return "" if value is None else str(value)
