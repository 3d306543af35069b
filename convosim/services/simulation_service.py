"""Bulk simulation orchestrator.

Parses an uploaded CSV, groups it into conversations, creates a job and
replays every conversation against the agent in the background. Each
conversation runs its turns in order under its own session; conversations
run concurrently up to the limiter's ceiling.

Example:
    service = SimulationService(store, executor, agent, ConcurrencyLimiter(5))
    job_id = await service.create_job(csv_text)
    await service.wait_for(job_id)
    job = await service.get_job(job_id)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from uuid import uuid4

from convosim.db.models import JobStatus
from convosim.services.concurrency import ConcurrencyLimiter
from convosim.services.conversation_grouper import Turn, group_conversations
from convosim.services.csv_reader import parse_csv_rows
from convosim.services.dialogflow_client import AgentLocator
from convosim.services.errors import ConversationTaskError, StoreError
from convosim.services.job_models import (
    DEFAULT_JOB_NAME,
    ERROR_RESPONSE_TEXT,
    ConversationRecord,
    JobSummary,
    SimulationJob,
    TurnResult,
    utc_now,
)
from convosim.services.job_store import SimulationJobStore
from convosim.services.turn_executor import RemoteTurnExecutor, TurnOutcome, TurnRequest

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Per-run bookkeeping shared by the conversation tasks of one job."""

    fatal: StoreError | None = None


def build_session_id(job_id: str) -> str:
    """Fresh agent session id for one conversation of a job."""
    return f"sim-{job_id}-{uuid4()}"


def to_turn_result(turn: Turn, outcome: TurnOutcome) -> TurnResult:
    """Combine a turn and its outcome into a timestamped TurnResult."""
    if outcome.error is not None:
        return TurnResult(
            conversation_id=turn.conversation_id,
            turn_number=turn.turn_number,
            user_input=turn.text,
            agent_response=ERROR_RESPONSE_TEXT,
            intent=None,
            confidence=0.0,
            page=None,
            timestamp=utc_now(),
            error=outcome.error.message,
        )
    return TurnResult(
        conversation_id=turn.conversation_id,
        turn_number=turn.turn_number,
        user_input=turn.text,
        agent_response=outcome.response_text,
        intent=outcome.intent,
        confidence=outcome.confidence,
        page=outcome.page,
        timestamp=utc_now(),
    )


class SimulationService:
    """Create bulk simulation jobs and drive them to a terminal state.

    Args:
        store: Dual-layer job store. Its live registry belongs to this
            service for the lifetime of the process.
        executor: Sends single turns to the agent.
        agent: Agent every conversation is replayed against.
        limiter: Caps how many conversations run at once.
    """

    def __init__(
        self,
        store: SimulationJobStore,
        executor: RemoteTurnExecutor,
        agent: AgentLocator,
        limiter: ConcurrencyLimiter,
    ) -> None:
        self._store = store
        self._executor = executor
        self._agent = agent
        self._limiter = limiter
        self._runs: dict[str, asyncio.Task[None]] = {}
        # Terminal mirrors whose final row write failed, retried at shutdown
        self._unpersisted: dict[str, SimulationJob] = {}

    @property
    def store(self) -> SimulationJobStore:
        return self._store

    async def create_job(self, csv_text: str, name: str | None = None) -> str:
        """Validate the CSV, create a job and start it in the background.

        Args:
            csv_text: Raw CSV content.
            name: Display name for the job. Defaults to "Bulk Simulation".

        Returns:
            The new job id. The job keeps running after this returns.

        Raises:
            MalformedInputError: If the CSV cannot be parsed.
            EmptyInputError: If no row yields a turn.
            StoreError: If the job row cannot be created.
        """
        rows = parse_csv_rows(csv_text)
        conversations = group_conversations(rows)

        job = SimulationJob(
            id=str(uuid4()),
            total=len(conversations),
            name=name or DEFAULT_JOB_NAME,
            agent_id=self._agent.agent_id,
        )
        await self._store.create(job)

        task = asyncio.create_task(
            self._run_job(job, conversations), name=f"simulation-{job.id}"
        )
        self._runs[job.id] = task
        task.add_done_callback(partial(self._on_run_done, job.id))
        return job.id

    def _on_run_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._runs.pop(job_id, None)
        if task.cancelled():
            logger.warning("Simulation job %s was cancelled", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Simulation job %s crashed: %s", job_id, exc, exc_info=exc
            )

    async def get_job(self, job_id: str) -> SimulationJob | None:
        """Current snapshot of a job, live or durable."""
        return await self._store.get(job_id)

    async def list_jobs(self, limit: int | None = None) -> list[JobSummary]:
        """Job summaries, most recently started first."""
        return await self._store.list_summaries(limit)

    async def wait_for(self, job_id: str) -> None:
        """Wait until the background run of ``job_id`` has finished."""
        task = self._runs.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Wait for every background run, then retry unpersisted final states."""
        if self._runs:
            await asyncio.gather(*list(self._runs.values()), return_exceptions=True)
        await self.retry_final_states()

    def unpersisted_job_ids(self) -> list[str]:
        """Ids of finished jobs whose terminal row is not yet durable."""
        return list(self._unpersisted)

    async def retry_final_states(self) -> list[str]:
        """Write the terminal state of every job whose finalize failed.

        A job whose row is written is evicted from the live registry.
        Jobs that fail again stay registered for a later retry.

        Returns:
            Ids of jobs whose terminal state is still not durable.
        """
        for job_id, job in list(self._unpersisted.items()):
            try:
                await self._store.persist_final_state(job)
            except StoreError as e:
                logger.error(
                    "Job %s: retry of final state failed, durable row still %s: %s",
                    job_id,
                    JobStatus.processing.value,
                    e.message,
                )
                continue
            del self._unpersisted[job_id]
            self._store.evict(job_id)
            logger.info(
                "Job %s: final state %s persisted on retry", job_id, job.status.value
            )
        return self.unpersisted_job_ids()

    async def _run_job(
        self, job: SimulationJob, conversations: dict[str, list[Turn]]
    ) -> None:
        state = _RunState()
        try:
            await self._store.mark_processing(job)
        except StoreError as e:
            # Never dispatched, but the job still fails from processing
            job.transition(JobStatus.processing)
            state.fatal = e
        else:
            results = await asyncio.gather(
                *(
                    self._limiter.schedule(
                        partial(self._guarded_conversation, job, state, cid, turns)
                    )
                    for cid, turns in conversations.items()
                ),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(
                        "Conversation task of job %s escaped its guard: %s",
                        job.id,
                        result,
                    )

        await self._finish(job, state)

    async def _guarded_conversation(
        self,
        job: SimulationJob,
        state: _RunState,
        conversation_id: str,
        turns: list[Turn],
    ) -> None:
        """Run one conversation and persist its record.

        Turn failures are recorded on the turn. Anything else the
        conversation raises fails only this conversation. A StoreError
        while persisting becomes the job-fatal error.
        """
        if state.fatal is not None:
            # Dispatch stopped; counted as failed when the job finishes
            return

        collected: list[TurnResult] = []
        started = time.monotonic()
        task_error: str | None = None
        try:
            await self._simulate_conversation(job, conversation_id, turns, collected)
        except Exception as e:
            error = ConversationTaskError(conversation_id, e)
            logger.exception("Job %s: %s", job.id, error.message)
            task_error = error.message

        record = ConversationRecord.build(
            conversation_id,
            collected,
            int((time.monotonic() - started) * 1000),
            error=task_error,
        )
        try:
            await self._store.append_conversation_record(job, record)
        except StoreError as e:
            if state.fatal is None:
                state.fatal = e
            logger.error(
                "Job %s: could not persist conversation %s: %s",
                job.id,
                conversation_id,
                e.message,
            )

    async def _simulate_conversation(
        self,
        job: SimulationJob,
        conversation_id: str,
        turns: list[Turn],
        collected: list[TurnResult],
    ) -> None:
        """Replay turns in order under one fresh session."""
        session_id = build_session_id(job.id)
        logger.debug(
            "Job %s: conversation %s (%d turns) session=%s",
            job.id,
            conversation_id,
            len(turns),
            session_id,
        )
        for turn in turns:
            outcome = await self._executor.execute(
                TurnRequest(session_id=session_id, text=turn.text, agent=self._agent)
            )
            result = to_turn_result(turn, outcome)
            collected.append(result)
            job.results.append(result)

    async def _finish(self, job: SimulationJob, state: _RunState) -> None:
        """Finalize the job, then evict its mirror once the row is durable."""
        if state.fatal is not None:
            job.abandon_remaining()
            status, error = JobStatus.failed, state.fatal.message
        else:
            status, error = JobStatus.completed, None

        try:
            await self._store.finalize(job, status, error)
        except StoreError as e:
            # Keep the mirror so readers still see a terminal job
            job.abandon_remaining()
            job.transition(JobStatus.failed)
            job.error = error or e.message
            self._unpersisted[job.id] = job
            logger.error(
                "Job %s: live state %s but durable row still %s, "
                "final state queued for retry: %s",
                job.id,
                job.status.value,
                JobStatus.processing.value,
                e.message,
            )
            return

        self._store.evict(job.id)
