"""Durable polling job queue with a single in-process worker."""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import Job
from kb_assistant.database.session import SessionFactory, session_scope
from kb_assistant.models.job import JobContext, JobStatus
from kb_assistant.repositories.job_repository import JobRepository
from kb_assistant.utils.errors import JobQueueError
from kb_assistant.utils.logging import bind_log_context, get_logger, log_error

logger = get_logger("job_queue")

JobHandler = Callable[[Dict[str, Any], JobContext], Awaitable[None]]


class JobQueue:
    """
    Polling task runner backed by the ``jobs`` table.

    One worker task claims the oldest pending job, runs its handler and
    records the outcome. Jobs never overlap. A failing handler returns the job
    to ``pending`` until ``max_attempts`` is reached, then the job is
    ``failed``; the last error is kept either way.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        poll_interval: float = 2.0,
        max_attempts: int = 3,
    ):
        self._session_factory = session_factory
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._handlers: Dict[str, JobHandler] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register_handler(self, job_type: str, handler: JobHandler) -> None:
        """Bind an async handler to a job type. Must happen before ``start``."""
        self._handlers[job_type] = handler
        logger.info(f"Job handler registered: {job_type}")

    async def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> str:
        """
        Persist a pending job and return its id.

        When ``session`` is given the job is added to that unit of work and
        commits with it; otherwise it is committed immediately.
        """
        try:
            payload_json = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise JobQueueError("Job payload is not JSON serializable", job_type=job_type) from e

        if session is not None:
            job = await JobRepository(session).create(
                type=job_type, payload_json=payload_json, max_attempts=self.max_attempts
            )
        else:
            async with session_scope(self._session_factory) as own_session:
                job = await JobRepository(own_session).create(
                    type=job_type, payload_json=payload_json, max_attempts=self.max_attempts
                )

        logger.info(f"Job enqueued: {job_type} ({job.id})")
        return job.id

    async def process_next_job(self) -> bool:
        """
        Run the oldest pending job, if any.

        Returns:
            True if a job was claimed, False if the queue was empty
        """
        async with self._lock:
            async with session_scope(self._session_factory) as session:
                job = await JobRepository(session).claim_next()
                if job is None:
                    return False
                job_id, job_type = job.id, job.type
                attempts, max_attempts = job.attempts, job.max_attempts
                payload_json = job.payload_json

            with bind_log_context(job_id=job_id):
                return await self._run_claimed(job_id, job_type, attempts, max_attempts, payload_json)

    async def _run_claimed(
        self, job_id: str, job_type: str, attempts: int, max_attempts: int, payload_json: str
    ) -> bool:
        handler = self._handlers.get(job_type)
        if handler is None:
            await self._finish(job_id, failed=True, error=f"No handler for job type: {job_type}")
            logger.error(f"Job failed: no handler for {job_type}")
            return True

        context = JobContext(
            job_id=job_id, job_type=job_type, attempt=attempts, max_attempts=max_attempts
        )
        try:
            await handler(json.loads(payload_json), context)
        except asyncio.CancelledError:
            # worker shutdown mid-job; recovered at next startup
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            if attempts >= max_attempts:
                await self._finish(job_id, failed=True, error=error)
                log_error(e, context={"job_type": job_type, "attempt": attempts, "final": True})
            else:
                await self._finish(job_id, failed=False, error=error)
                logger.warning(
                    f"Job failed, will retry: {job_type} attempt {attempts}/{max_attempts}: {error}"
                )
            return True

        async with session_scope(self._session_factory) as session:
            await JobRepository(session).mark_completed(job_id)
        logger.info(f"Job completed: {job_type} (attempt {attempts})")
        return True

    async def _finish(self, job_id: str, failed: bool, error: str) -> None:
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            if failed:
                await repo.mark_failed(job_id, error)
            else:
                await repo.mark_pending(job_id, error)

    async def recover_interrupted_jobs(self) -> int:
        """
        Return jobs left ``running`` by a crashed process to ``pending``.

        Jobs that already used their last attempt are failed instead.
        Only safe while no worker is running.
        """
        recovered = 0
        async with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            for job in await repo.list_by_status(JobStatus.RUNNING):
                if job.attempts >= job.max_attempts:
                    await repo.mark_failed(job.id, job.error or "Interrupted by process restart")
                else:
                    await repo.mark_pending(job.id, job.error or "Interrupted by process restart")
                recovered += 1
        if recovered:
            logger.warning(f"Recovered {recovered} interrupted job(s)")
        return recovered

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self._session_factory() as session:
            return await JobRepository(session).get_by_id(job_id)

    def start(self) -> None:
        """Start the worker loop on the running event loop."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="job-queue-worker")
        logger.info(f"Job queue worker started (poll interval {self.poll_interval}s)")

    async def stop(self) -> None:
        """Stop the worker, waiting for the current job to finish."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            logger.info("Job queue worker stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            processed = False
            try:
                processed = await self.process_next_job()
            except Exception as e:
                # keep polling; the store may come back
                logger.error(f"Job worker error: {e}", exc_info=True)
            if processed:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
