"""Tests for the durable job queue."""

import asyncio

import pytest

from kb_assistant.database.models import Job
from kb_assistant.database.session import session_scope
from kb_assistant.models.job import JobStatus
from kb_assistant.services.job_queue import JobQueue
from kb_assistant.utils.errors import JobQueueError


@pytest.fixture
def queue(session_factory):
    return JobQueue(session_factory, poll_interval=0.01, max_attempts=3)


class TestProcessing:
    """Claiming, completing and retrying jobs."""

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.process_next_job() is False

    @pytest.mark.asyncio
    async def test_successful_job_completes(self, queue):
        seen = []

        async def handler(payload, context):
            seen.append((payload, context.attempt))

        queue.register_handler("echo", handler)
        job_id = await queue.enqueue("echo", {"value": 42})

        assert await queue.process_next_job() is True

        job = await queue.get_job(job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.attempts == 1
        assert job.completed_at is not None
        assert seen == [({"value": 42}, 1)]

    @pytest.mark.asyncio
    async def test_failing_job_is_retried_then_failed(self, queue):
        calls = []

        async def handler(payload, context):
            calls.append(context.attempt)
            raise RuntimeError(f"boom {context.attempt}")

        queue.register_handler("flaky", handler)
        job_id = await queue.enqueue("flaky", {})

        await queue.process_next_job()
        job = await queue.get_job(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.error == "boom 1"

        await queue.process_next_job()
        await queue.process_next_job()

        job = await queue.get_job(job_id)
        assert calls == [1, 2, 3]
        assert job.status == JobStatus.FAILED.value
        assert job.attempts == job.max_attempts == 3
        assert job.error == "boom 3"
        assert await queue.process_next_job() is False

    @pytest.mark.asyncio
    async def test_unknown_job_type_fails_immediately(self, queue):
        job_id = await queue.enqueue("mystery", {})

        await queue.process_next_job()

        job = await queue.get_job(job_id)
        assert job.status == JobStatus.FAILED.value
        assert "No handler" in job.error

    @pytest.mark.asyncio
    async def test_jobs_run_oldest_first(self, queue):
        order = []

        async def handler(payload, context):
            order.append(payload["n"])

        queue.register_handler("seq", handler)
        for n in range(3):
            await queue.enqueue("seq", {"n": n})

        while await queue.process_next_job():
            pass

        assert order == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_payload_must_be_json(self, queue):
        with pytest.raises(JobQueueError):
            await queue.enqueue("bad", {"value": object()})


class TestRecovery:
    @pytest.mark.asyncio
    async def test_running_jobs_return_to_pending(self, queue, session_factory):
        async with session_scope(session_factory) as session:
            session.add(Job(id="job_a", type="x", status="running", attempts=1, max_attempts=3))
            session.add(Job(id="job_b", type="x", status="running", attempts=3, max_attempts=3))

        recovered = await queue.recover_interrupted_jobs()

        assert recovered == 2
        assert (await queue.get_job("job_a")).status == JobStatus.PENDING.value
        assert (await queue.get_job("job_b")).status == JobStatus.FAILED.value


class TestWorkerLoop:
    @pytest.mark.asyncio
    async def test_start_processes_jobs_and_stop_waits(self, queue):
        done = asyncio.Event()

        async def handler(payload, context):
            done.set()

        queue.register_handler("ping", handler)
        await queue.enqueue("ping", {})

        queue.start()
        assert queue.is_running
        await asyncio.wait_for(done.wait(), timeout=5)
        await queue.stop()

        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, queue):
        await queue.stop()
        assert not queue.is_running
