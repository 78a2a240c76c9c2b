import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.jobs.models import JobStatus
from jobqueue.v1.jobs.policy import FailureOutcome
from jobqueue.v1.jobs.schemas import JobCreate
from jobqueue.v1.jobs.worker import JobHandlerTimeout, JobWorker, describe_error


@pytest.fixture
def worker(store, policy, test_settings):
    return JobWorker(store, policy, settings=test_settings)


def stub_job(job_type: str = "type.b"):
    return SimpleNamespace(id=uuid4(), job_type=job_type, payload={}, retry_count=0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


class TestRunOnce:
    """Tests for a single worker iteration"""

    async def test_returns_false_when_queue_empty(self, worker):
        worker.register_handler("work", lambda job: None)

        assert await worker.run_once() is False

    async def test_successful_handler_completes_job(self, worker, store):
        seen = []

        async def handler(job):
            seen.append(job.payload)

        worker.register_handler("email.send", handler)
        job_id = await store.enqueue(
            JobCreate(job_type="email.send", payload={"to": "a@example.com"})
        )

        assert await worker.run_once() is True

        assert seen == [{"to": "a@example.com"}]
        job = await store.get_job(job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.completed_at is not None

    async def test_sync_handler_is_supported(self, worker, store):
        worker.register_handler("work", lambda job: {"ok": True})
        job_id = await store.enqueue(JobCreate(job_type="work"))

        await worker.run_once()

        assert (await store.get_job(job_id)).status == JobStatus.COMPLETED.value

    async def test_raising_handler_schedules_retry(self, worker, store):
        async def handler(job):
            raise ConnectionError("smtp unavailable")

        worker.register_handler("email.send", handler)
        job_id = await store.enqueue(JobCreate(job_type="email.send"))

        assert await worker.run_once() is True

        job = await store.get_job(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.retry_count == 1
        assert job.error_message == "smtp unavailable"

    async def test_returned_exception_counts_as_failure(self, worker, store):
        worker.register_handler("work", lambda job: ValueError("bad payload"))
        job_id = await store.enqueue(JobCreate(job_type="work"))

        await worker.run_once()

        job = await store.get_job(job_id)
        assert job.retry_count == 1
        assert job.error_message == "bad payload"

    async def test_handler_exhausting_retries_dead_letters_job(self, worker, store):
        async def handler(job):
            raise RuntimeError("always broken")

        worker.register_handler("work", handler)
        job_id = await store.enqueue(JobCreate(job_type="work", max_retries=1))

        await worker.run_once()

        assert (await store.get_job(job_id)).status == JobStatus.DEAD.value
        entries = await store.list_dead_letters()
        assert [entry.original_job_id for entry in entries] == [job_id]

    async def test_claims_only_registered_job_types(self, worker, store):
        worker.register_handler("type.a", lambda job: None)
        other_id = await store.enqueue(JobCreate(job_type="type.b"))

        assert await worker.run_once() is False
        assert (await store.get_job(other_id)).status == JobStatus.PENDING.value

    async def test_claimed_job_without_handler_is_failed(self, test_settings):
        store = AsyncMock()
        policy = AsyncMock()
        job = stub_job("type.b")
        store.claim.return_value = job
        policy.fail.return_value = FailureOutcome.RETRIED

        worker = JobWorker(store, policy, settings=test_settings)
        worker.register_handler("type.a", lambda job: None)

        assert await worker.run_once() is True

        store.claim.assert_awaited_once_with(["type.a"])
        policy.fail.assert_awaited_once_with(job.id, "No handler for job type: type.b")
        store.complete.assert_not_awaited()

    async def test_worker_without_handlers_fails_any_claimed_job(self, worker, store):
        job_id = await store.enqueue(JobCreate(job_type="type.b"))

        assert await worker.run_once() is True

        job = await store.get_job(job_id)
        assert job.retry_count == 1
        assert job.error_message == "No handler for job type: type.b"

    async def test_handler_timeout_fails_job(self, store, policy, test_settings):
        settings = test_settings.model_copy(update={"job_handler_timeout_s": 0.05})
        worker = JobWorker(store, policy, settings=settings)

        async def slow_handler(job):
            await asyncio.sleep(5)

        worker.register_handler("slow", slow_handler)
        job_id = await store.enqueue(JobCreate(job_type="slow"))

        await worker.run_once()

        job = await store.get_job(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.error_message == "Job handler timed out after 0.05s"

    async def test_handler_timeout_error_keeps_its_message(
        self, store, policy, test_settings
    ):
        settings = test_settings.model_copy(update={"job_handler_timeout_s": 5})
        worker = JobWorker(store, policy, settings=settings)

        async def handler(job):
            raise TimeoutError("socket read timed out")

        worker.register_handler("fetch", handler)
        job_id = await store.enqueue(JobCreate(job_type="fetch"))

        await worker.run_once()

        job = await store.get_job(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.error_message == "socket read timed out"

    async def test_reporting_errors_do_not_escape(self, test_settings):
        store = AsyncMock()
        policy = AsyncMock()
        store.claim.return_value = stub_job("work")
        store.complete.side_effect = RuntimeError("connection lost")

        worker = JobWorker(store, policy, settings=test_settings)
        worker.register_handler("work", lambda job: None)

        assert await worker.run_once() is True
        store.complete.assert_awaited_once()

    async def test_completion_of_reclaimed_job_does_not_raise(self, test_settings):
        store = AsyncMock()
        policy = AsyncMock()
        job = stub_job("work")
        store.claim.return_value = job
        store.complete.return_value = False

        worker = JobWorker(store, policy, settings=test_settings)
        worker.register_handler("work", lambda job: None)

        assert await worker.run_once() is True
        store.complete.assert_awaited_once_with(job.id)
        policy.fail.assert_not_awaited()

    async def test_failure_reporting_errors_do_not_escape(self, test_settings):
        store = AsyncMock()
        policy = AsyncMock()
        store.claim.return_value = stub_job("work")
        policy.fail.side_effect = RuntimeError("connection lost")

        def handler(job):
            raise ValueError("bad")

        worker = JobWorker(store, policy, settings=test_settings)
        worker.register_handler("work", handler)

        assert await worker.run_once() is True
        policy.fail.assert_awaited_once()

    async def test_claim_errors_propagate(self, test_settings):
        store = AsyncMock()
        store.claim.side_effect = RuntimeError("database down")

        worker = JobWorker(store, AsyncMock(), settings=test_settings)

        with pytest.raises(RuntimeError, match="database down"):
            await worker.run_once()


class TestWorkerLoop:
    """Tests for the start/stop lifecycle"""

    async def test_processes_jobs_until_stopped(self, worker, store):
        processed = []
        worker.register_handler("work", lambda job: processed.append(job.id))
        job_ids = [await store.enqueue(JobCreate(job_type="work")) for _ in range(3)]

        task = asyncio.create_task(worker.start())

        async def all_completed():
            counts = await store.count_by_status()
            return counts.get(JobStatus.COMPLETED.value, 0) == 3

        try:
            await wait_until(all_completed)
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=2)

        assert sorted(processed) == sorted(job_ids)
        assert worker.is_running() is False

    async def test_stop_interrupts_idle_sleep(self, store, policy, test_settings):
        settings = test_settings.model_copy(update={"job_poll_interval_ms": 60_000})
        worker = JobWorker(store, policy, settings=settings)
        worker.register_handler("work", lambda job: None)

        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.05)
        assert worker.is_running() is True

        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert worker.is_running() is False

    async def test_claim_error_backs_off_then_resumes(self, test_settings):
        store = AsyncMock()
        store.claim.side_effect = [RuntimeError("database down"), None]
        worker = JobWorker(store, AsyncMock(), settings=test_settings)
        worker.register_handler("work", lambda job: None)

        sleeps = []

        async def record_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                worker.stop()

        worker._sleep = record_sleep

        await asyncio.wait_for(worker.start(), timeout=1)

        assert sleeps == [pytest.approx(0.02), pytest.approx(0.01)]
        assert store.claim.await_count == 2

    async def test_stop_before_start_skips_claiming(self, worker, store):
        worker.register_handler("work", lambda job: None)
        job_id = await store.enqueue(JobCreate(job_type="work"))

        task = asyncio.create_task(worker.start())
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        assert worker.is_running() is False
        assert (await store.get_job(job_id)).status == JobStatus.PENDING.value

    async def test_restart_after_stop_processes_jobs(self, worker, store):
        worker.register_handler("work", lambda job: None)
        worker.stop()
        await asyncio.wait_for(worker.start(), timeout=1)

        job_id = await store.enqueue(JobCreate(job_type="work"))
        task = asyncio.create_task(worker.start())

        async def completed():
            job = await store.get_job(job_id)
            return job.status == JobStatus.COMPLETED.value

        try:
            await wait_until(completed)
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=1)

    async def test_start_twice_raises(self, worker):
        worker.register_handler("work", lambda job: None)
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.02)

        try:
            with pytest.raises(RuntimeError, match="already running"):
                await worker.start()
        finally:
            worker.stop()
            await asyncio.wait_for(task, timeout=1)

    async def test_registration_closed_after_start(self, worker):
        worker.register_handler("work", lambda job: None)
        task = asyncio.create_task(worker.start())
        await asyncio.sleep(0.02)
        worker.stop()
        await asyncio.wait_for(task, timeout=1)

        with pytest.raises(RuntimeError, match="frozen"):
            worker.register_handler("late", lambda job: None)

    def test_worker_builds_its_own_registry(self, store, policy):
        first = JobWorker(store, policy)
        second = JobWorker(store, policy)
        first.register_handler("work", lambda job: None)

        assert "work" in first.registry
        assert "work" not in second.registry

    def test_accepts_prebuilt_registry(self, store, policy):
        registry = JobRegistry()
        registry.register("work", lambda job: None)

        worker = JobWorker(store, policy, registry)

        assert worker.registry is registry
        assert worker.settings is store.settings


class TestDescribeError:
    """Tests for failure message extraction"""

    def test_uses_exception_message(self):
        assert describe_error(ValueError("bad input")) == "bad input"

    def test_falls_back_to_exception_type(self):
        assert describe_error(KeyError()) == "KeyError"
        assert describe_error(JobHandlerTimeout()) == "JobHandlerTimeout"
