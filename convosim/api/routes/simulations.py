"""FastAPI routes for bulk simulations.

Provides upload, listing, detail and CSV report endpoints. Uploads return
as soon as the job exists; the simulation keeps running in the background
and is polled through the detail endpoint.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import Response

from convosim.api.schemas import (
    JobCreatedResponse,
    JobResponse,
    JobSummaryResponse,
)
from convosim.services.errors import MalformedInputError
from convosim.services.report import render_report, report_filename
from convosim.services.simulation_service import SimulationService

router = APIRouter(prefix="/simulations", tags=["simulations"])


def get_simulation_service(request: Request) -> SimulationService:
    """Dependency to get the process-wide SimulationService."""
    service = getattr(request.app.state, "simulation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Simulation service not ready")
    return service


@router.post("/upload", response_model=JobCreatedResponse, status_code=200)
async def upload_simulation(
    file: UploadFile | None = File(None),
    name: str | None = Form(None),
    service: SimulationService = Depends(get_simulation_service),
) -> JobCreatedResponse:
    """Start a bulk simulation from an uploaded CSV.

    Args:
        file: Multipart CSV upload.
        name: Optional display name for the job.
        service: Simulation service dependency.

    Returns:
        The new job id.

    Raises:
        HTTPException: 400 when no file is sent.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    raw = await file.read()
    try:
        csv_text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedInputError("file is not UTF-8 text") from e

    job_id = await service.create_job(csv_text, name=name)
    return JobCreatedResponse(job_id=job_id)


@router.get("", response_model=list[JobSummaryResponse])
async def list_simulations(
    service: SimulationService = Depends(get_simulation_service),
) -> list[JobSummaryResponse]:
    """List all simulation jobs, most recent first."""
    summaries = await service.list_jobs()
    return [JobSummaryResponse.from_summary(s) for s in summaries]


@router.get("/{job_id}", response_model=JobResponse)
async def get_simulation(
    job_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> JobResponse:
    """Get a job's status, counts and turn results.

    Raises:
        HTTPException: 404 if the job is unknown.
    """
    job = await service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return JobResponse.from_job(job)


@router.get("/{job_id}/download")
async def download_report(
    job_id: str,
    service: SimulationService = Depends(get_simulation_service),
) -> Response:
    """Download the job's turn results as a CSV report.

    Raises:
        HTTPException: 404 if the job is unknown.
    """
    job = await service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return Response(
        content=render_report(job),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{report_filename(job.id)}"'
        },
    )
