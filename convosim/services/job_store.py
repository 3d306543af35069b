"""Dual-layer job store: volatile live mirror plus durable SQL rows.

The live registry holds in-flight SimulationJob objects so progress
polls are answered without touching the database. Every state change is
also written to the durable store, which alone survives restarts. A read
prefers the live mirror and falls back to the durable rows once the job
has been evicted.

Example:
    store = SimulationJobStore(LiveJobRegistry(), DurableJobStore(AsyncSessionLocal))
    await store.create(job)
    snapshot = await store.get(job.id)
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from convosim.db.models import (
    ConversationResult,
    ConversationStatus,
    JobStatus,
    SimulationRun,
    utc_now_iso,
)
from convosim.services.errors import StoreError
from convosim.services.job_models import (
    TERMINAL_STATUSES,
    ConversationRecord,
    JobSummary,
    SimulationJob,
    TurnResult,
    utc_now,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted before completion (process restarted)"


def _to_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class LiveJobRegistry:
    """Process-local map of job id to in-flight SimulationJob."""

    def __init__(self) -> None:
        self._jobs: dict[str, SimulationJob] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def register(self, job: SimulationJob) -> None:
        self._jobs[job.id] = job

    def read_live(self, job_id: str) -> SimulationJob | None:
        return self._jobs.get(job_id)

    def evict(self, job_id: str) -> SimulationJob | None:
        return self._jobs.pop(job_id, None)

    def job_ids(self) -> set[str]:
        return set(self._jobs)


class DurableJobStore:
    """SQLAlchemy-backed persistence for runs and conversation records.

    Every method opens its own short-lived session, so concurrent
    conversation tasks never share one. Driver errors surface as
    StoreError.

    Args:
        session_factory: async_sessionmaker bound to the target engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver errors to StoreError."""
        try:
            async with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error("Durable store %s failed: %s", operation, e)
            raise StoreError(f"{operation}: {type(e).__name__}") from e

    async def create_run(self, job: SimulationJob) -> None:
        """Insert the run row in its initial state."""
        async with self._session("create run") as db:
            db.add(
                SimulationRun(
                    id=job.id,
                    name=job.name,
                    status=job.status.value,
                    agent_id=job.agent_id,
                    total_conversations=job.total,
                    processed_conversations=job.progress,
                    passed_conversations=job.passed,
                    failed_conversations=job.failed,
                    started_at=job.started_at.isoformat(),
                )
            )
            await db.commit()

    async def update_status(self, job_id: str, status: JobStatus) -> None:
        """Write a non-terminal status change."""
        async with self._session("update status") as db:
            await db.execute(
                update(SimulationRun)
                .where(SimulationRun.id == job_id)
                .values(status=status.value, updated_at=utc_now_iso())
            )
            await db.commit()

    async def append_conversation(
        self, job_id: str, record: ConversationRecord, sequence: int
    ) -> None:
        """Insert one conversation record and bump the run counters.

        Counters are incremented in SQL so concurrent appends never lose
        an update. Insert and counter update commit together.
        """
        passed = 1 if record.overall_passed else 0
        async with self._session("append conversation") as db:
            db.add(
                ConversationResult(
                    run_id=job_id,
                    sequence=sequence,
                    conversation_id=record.conversation_id,
                    status=(
                        ConversationStatus.PASSED.value
                        if record.overall_passed
                        else ConversationStatus.FAILED.value
                    ),
                    overall_passed=record.overall_passed,
                    turn_count=len(record.turns),
                    execution_time_ms=record.execution_time_ms,
                    turns_json=json.dumps([t.to_dict() for t in record.turns]),
                    error_message=record.error,
                )
            )
            await db.execute(
                update(SimulationRun)
                .where(SimulationRun.id == job_id)
                .values(
                    processed_conversations=SimulationRun.processed_conversations + 1,
                    passed_conversations=SimulationRun.passed_conversations + passed,
                    failed_conversations=SimulationRun.failed_conversations + (1 - passed),
                    updated_at=utc_now_iso(),
                )
            )
            await db.commit()

    async def finalize_run(
        self,
        job: SimulationJob,
        status: JobStatus,
        ended_at: datetime,
        error: str | None = None,
    ) -> None:
        """Write the terminal status, final counters and end time."""
        async with self._session("finalize run") as db:
            await db.execute(
                update(SimulationRun)
                .where(SimulationRun.id == job.id)
                .values(
                    status=status.value,
                    processed_conversations=job.progress,
                    passed_conversations=job.passed,
                    failed_conversations=job.failed,
                    completed_at=ended_at.isoformat(),
                    error_message=error,
                    updated_at=utc_now_iso(),
                )
            )
            await db.commit()

    async def read_durable(self, job_id: str) -> SimulationJob | None:
        """Rebuild a SimulationJob from its run row and conversation rows."""
        async with self._session("read run") as db:
            run = await db.get(SimulationRun, job_id)
            if run is None:
                return None
            rows = await db.execute(
                select(ConversationResult)
                .where(ConversationResult.run_id == job_id)
                .order_by(ConversationResult.sequence)
            )
            conversations = [_record_from_row(row) for row in rows.scalars().all()]

        job = SimulationJob(
            id=run.id,
            total=run.total_conversations,
            name=run.name,
            agent_id=run.agent_id,
            status=JobStatus(run.status),
            progress=run.processed_conversations,
            passed=run.passed_conversations,
            failed=run.failed_conversations,
            started_at=_to_datetime(run.started_at) or utc_now(),
            ended_at=_to_datetime(run.completed_at),
            error=run.error_message,
            conversations=conversations,
        )
        job.results = [turn for record in conversations for turn in record.turns]
        return job

    async def list_summaries(self, limit: int | None = None) -> list[JobSummary]:
        """List run summaries, most recently started first."""
        async with self._session("list runs") as db:
            query = select(SimulationRun).order_by(
                SimulationRun.started_at.desc(), SimulationRun.created_at.desc()
            )
            if limit is not None:
                query = query.limit(limit)
            result = await db.execute(query)
            runs = list(result.scalars().all())
        return [_summary_from_run(run) for run in runs]

    async def mark_interrupted(self, exclude: set[str]) -> list[str]:
        """Fail every pending or processing run not in ``exclude``.

        Each run follows the job state machine: a pending run passes
        through processing before failing. Unfinished conversations are
        counted as failed so the recovered row satisfies progress == total.

        Returns:
            Ids of the runs that were marked failed.
        """
        async with self._session("recover runs") as db:
            result = await db.execute(
                select(SimulationRun).where(
                    SimulationRun.status.in_(
                        [JobStatus.pending.value, JobStatus.processing.value]
                    )
                )
            )
            recovered = []
            for run in result.scalars().all():
                if run.id in exclude:
                    continue
                job = _interrupted_job(run)
                run.status = job.status.value
                run.processed_conversations = job.progress
                run.failed_conversations = job.failed
                run.completed_at = job.ended_at.isoformat()
                run.error_message = job.error
                recovered.append(run.id)
            await db.commit()
        return recovered


def _interrupted_job(run: SimulationRun) -> SimulationJob:
    """Drive an orphaned run's counters through the failed transition."""
    job = SimulationJob(
        id=run.id,
        total=run.total_conversations,
        status=JobStatus(run.status),
        progress=run.processed_conversations,
        passed=run.passed_conversations,
        failed=run.failed_conversations,
    )
    if job.status is JobStatus.pending:
        job.transition(JobStatus.processing)
    job.abandon_remaining()
    job.transition(JobStatus.failed)
    job.error = INTERRUPTED_MESSAGE
    return job


def _record_from_row(row: ConversationResult) -> ConversationRecord:
    turns = tuple(TurnResult.from_dict(t) for t in json.loads(row.turns_json or "[]"))
    return ConversationRecord(
        conversation_id=row.conversation_id,
        turns=turns,
        execution_time_ms=row.execution_time_ms,
        overall_passed=row.overall_passed,
        error=row.error_message,
    )


def _summary_from_run(run: SimulationRun) -> JobSummary:
    started = _to_datetime(run.started_at) or utc_now()
    return JobSummary(
        id=run.id,
        name=run.name,
        status=JobStatus(run.status),
        total=run.total_conversations,
        progress=run.processed_conversations,
        passed=run.passed_conversations,
        failed=run.failed_conversations,
        started_at=started,
        completed_at=_to_datetime(run.completed_at),
        created_at=_to_datetime(run.created_at) or started,
        error=run.error_message,
    )


class SimulationJobStore:
    """Facade over the live registry and the durable store.

    Write operations persist first and only then touch the mirror, so a
    failed write leaves the mirror describing what is actually stored.

    Args:
        live: Registry of in-flight jobs, owned by this store.
        durable: Durable store for runs and records.
    """

    def __init__(self, live: LiveJobRegistry, durable: DurableJobStore) -> None:
        self.live = live
        self.durable = durable

    async def create(self, job: SimulationJob) -> None:
        """Persist a new pending job and register its live mirror."""
        await self.durable.create_run(job)
        self.live.register(job)
        logger.info("Created simulation job %s (%d conversations)", job.id, job.total)

    def read_live(self, job_id: str) -> SimulationJob | None:
        """Return the in-flight mirror, or None once evicted."""
        return self.live.read_live(job_id)

    async def read_durable(self, job_id: str) -> SimulationJob | None:
        """Rebuild the job from durable rows only."""
        return await self.durable.read_durable(job_id)

    async def get(self, job_id: str) -> SimulationJob | None:
        """Return the live mirror while present, else the durable rebuild."""
        live = self.read_live(job_id)
        if live is not None:
            return live
        return await self.read_durable(job_id)

    async def list_summaries(self, limit: int | None = None) -> list[JobSummary]:
        """Durable run summaries, most recently started first."""
        return await self.durable.list_summaries(limit)

    async def mark_processing(self, job: SimulationJob) -> None:
        """Move a pending job to processing in both layers."""
        job.check_transition(JobStatus.processing)
        await self.durable.update_status(job.id, JobStatus.processing)
        job.transition(JobStatus.processing)
        logger.info("Simulation job %s processing", job.id)

    async def append_conversation_record(
        self, job: SimulationJob, record: ConversationRecord
    ) -> None:
        """Persist a finished conversation, then count it on the mirror."""
        sequence = job.claim_sequence()
        await self.durable.append_conversation(job.id, record, sequence)
        job.record_conversation(record)

    async def finalize(
        self, job: SimulationJob, status: JobStatus, error: str | None = None
    ) -> None:
        """Move the job to a terminal status in both layers.

        The durable row is written first. If that write fails the mirror
        is left untouched and StoreError propagates.

        Raises:
            InvalidStateTransition: If ``status`` is not reachable.
            StoreError: If the durable update fails.
        """
        job.check_transition(status)
        ended = utc_now()
        await self.durable.finalize_run(job, status, ended, error)
        job.transition(status)
        job.ended_at = ended
        if error is not None:
            job.error = error
        logger.info(
            "Simulation job %s %s: %d passed, %d failed of %d",
            job.id,
            status.value,
            job.passed,
            job.failed,
            job.total,
        )

    async def persist_final_state(self, job: SimulationJob) -> None:
        """Write the mirror's terminal state to the durable row.

        Used to retry a finalize whose durable write failed after the
        mirror had already been moved to its terminal status.

        Raises:
            ValueError: If the mirror is not terminal.
            StoreError: If the durable update fails.
        """
        if job.status not in TERMINAL_STATUSES:
            raise ValueError(f"Job {job.id} is {job.status.value}, not terminal")
        await self.durable.finalize_run(
            job, job.status, job.ended_at or utc_now(), job.error
        )

    def evict(self, job_id: str) -> None:
        """Drop the live mirror. Later reads fall back to durable rows."""
        self.live.evict(job_id)

    async def recover_interrupted(self) -> list[str]:
        """Fail durable runs left unfinished by a previous process."""
        recovered = await self.durable.mark_interrupted(exclude=self.live.job_ids())
        if recovered:
            logger.warning(
                "Marked %d interrupted simulation job(s) as failed: %s",
                len(recovered),
                ", ".join(recovered),
            )
        return recovered
