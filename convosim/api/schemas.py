"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the ConvoSim REST API:
job creation, job detail with turn results, and job listings.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from convosim.errors import sanitize_error_message
from convosim.services.job_models import JobSummary, SimulationJob, TurnResult


class JobStatusEnum(str, Enum):
    """Valid job status values for API responses."""

    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class JobCreatedResponse(BaseModel):
    """Response schema for an accepted upload."""

    job_id: str


class TurnResultResponse(BaseModel):
    """One replayed turn, keyed the way the dashboard expects."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    turn_number: int = Field(alias="turnNumber")
    user_input: str = Field(alias="userInput")
    agent_response: str = Field(alias="agentResponse")
    intent: str | None = None
    confidence: float = 0.0
    page: str | None = None
    timestamp: datetime
    error: str | None = None

    @classmethod
    def from_result(cls, result: TurnResult) -> "TurnResultResponse":
        return cls(
            conversation_id=result.conversation_id,
            turn_number=result.turn_number,
            user_input=result.user_input,
            agent_response=result.agent_response,
            intent=result.intent,
            confidence=result.confidence,
            page=result.page,
            timestamp=result.timestamp,
            error=result.error,
        )


class JobResponse(BaseModel):
    """Response schema for a single job, including its turn results."""

    id: str
    name: str
    status: JobStatusEnum
    agent_id: str | None = None
    progress: int
    total: int
    passed: int
    failed: int
    started_at: datetime
    ended_at: datetime | None = None
    error: str | None = None
    results: list[TurnResultResponse] = []

    @classmethod
    def from_job(cls, job: SimulationJob) -> "JobResponse":
        return cls(
            id=job.id,
            name=job.name,
            status=JobStatusEnum(job.status.value),
            agent_id=job.agent_id,
            progress=job.progress,
            total=job.total,
            passed=job.passed,
            failed=job.failed,
            started_at=job.started_at,
            ended_at=job.ended_at,
            error=sanitize_error_message(job.error),
            results=[TurnResultResponse.from_result(r) for r in job.results],
        )


class JobSummaryResponse(BaseModel):
    """Response schema for one row of the job listing."""

    id: str
    name: str
    status: JobStatusEnum
    total: int
    progress: int
    passed: int
    failed: int
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None

    @classmethod
    def from_summary(cls, summary: JobSummary) -> "JobSummaryResponse":
        return cls(
            id=summary.id,
            name=summary.name,
            status=JobStatusEnum(summary.status.value),
            total=summary.total,
            progress=summary.progress,
            passed=summary.passed,
            failed=summary.failed,
            started_at=summary.started_at,
            completed_at=summary.completed_at,
            error=sanitize_error_message(summary.error),
        )
