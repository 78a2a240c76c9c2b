"""
Polling job worker.
"""

import asyncio
import contextlib
import inspect
import os
import socket
import time
from typing import Any

from jobqueue.config.logging import get_logger, job_log_context
from jobqueue.config.settings import Settings
from jobqueue.v1.core.registries import JobHandler, JobRegistry
from jobqueue.v1.jobs.models import Job
from jobqueue.v1.jobs.policy import RetryPolicy
from jobqueue.v1.jobs.store import JobStore

logger = get_logger(__name__)


class JobHandlerTimeout(Exception):
    """Raised when a handler runs past the configured timeout."""


def describe_error(error: BaseException) -> str:
    """Failure message recorded on the job."""
    return str(error) or error.__class__.__name__


class JobWorker:
    """
    Single-loop job worker.

    Each iteration claims at most one job restricted to the registered job
    types, runs its handler to completion and reports the outcome before
    claiming again. Idle and error sleeps are cut short by stop(); a handler
    that is already running is never interrupted by it.
    """

    def __init__(
        self,
        store: JobStore,
        policy: RetryPolicy,
        registry: JobRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.policy = policy
        self.registry = registry if registry is not None else JobRegistry()
        self.settings = settings or store.settings
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self._running = False
        self._stop_event = asyncio.Event()

    def register_handler(self, job_type: str, handler: JobHandler) -> None:
        """Register a handler; only allowed before start()."""
        self.registry.register(job_type, handler)

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the worker loop until stop() is called."""
        if self._running:
            raise RuntimeError("Worker is already running")

        self._running = True
        self.registry.freeze()

        job_types = self.registry.list()
        if not job_types:
            logger.warning(
                "Worker started without handlers; claimed jobs will be failed",
                worker_id=self.worker_id,
            )

        logger.info(
            "Worker started",
            worker_id=self.worker_id,
            job_types=job_types,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            handler_timeout_s=self.settings.job_handler_timeout_s,
        )

        try:
            while self._running and not self._stop_event.is_set():
                try:
                    processed = await self.run_once()
                except Exception:
                    logger.exception("Worker poll error", worker_id=self.worker_id)
                    await self._sleep(self.settings.poll_interval_s * 2)
                    continue

                if not processed:
                    await self._sleep(self.settings.poll_interval_s)
        finally:
            self._running = False
            # A stop request is consumed by the run it ended
            self._stop_event.clear()
            logger.info("Worker stopped", worker_id=self.worker_id)

    def stop(self) -> None:
        """Ask the loop to exit at the next iteration boundary.

        A stop requested before start() has begun looping makes that start()
        return without claiming.
        """
        if self._running:
            logger.info("Worker stopping", worker_id=self.worker_id)
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was claimed, False if the queue had nothing eligible

        Claim errors propagate; handler and reporting errors do not.
        """
        job = await self.store.claim(self.registry.list() or None)
        if job is None:
            return False

        with job_log_context(str(job.id), job.job_type, worker_id=self.worker_id):
            await self._process_job(job)
        return True

    async def _process_job(self, job: Job) -> None:
        handler = self.registry.find(job.job_type)

        if handler is None:
            logger.warning("No handler registered for job type")
            await self._report_failure(job, f"No handler for job type: {job.job_type}")
            return

        started = time.monotonic()
        logger.info("Processing job", retry_count=job.retry_count)

        try:
            result = await self._invoke(handler, job)
            error = result if isinstance(result, Exception) else None
        except Exception as e:
            error = e

        duration_ms = round((time.monotonic() - started) * 1000, 2)

        if error is None:
            await self._report_success(job)
            logger.info("Job completed", duration_ms=duration_ms)
            return

        message = describe_error(error)
        logger.error(
            "Job failed",
            error=message,
            error_type=error.__class__.__name__,
            duration_ms=duration_ms,
        )
        await self._report_failure(job, message)

    async def _invoke(self, handler: JobHandler, job: Job) -> Any:
        timeout = self.settings.job_handler_timeout_s
        if timeout is None:
            return await _call_handler(handler, job)

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await _call_handler(handler, job)
        except TimeoutError as e:
            # A TimeoutError raised by the handler itself keeps its own message
            if not deadline.expired():
                raise
            raise JobHandlerTimeout(f"Job handler timed out after {timeout:g}s") from e

    async def _report_success(self, job: Job) -> None:
        try:
            completed = await self.store.complete(job.id)
        except Exception:
            logger.exception("Failed to record job completion")
            return

        if not completed:
            logger.warning("Completion ignored; job is no longer running")

    async def _report_failure(self, job: Job, message: str) -> None:
        # The job stays running until reaped if this write is lost
        try:
            await self.policy.fail(job.id, message)
        except Exception:
            logger.exception("Failed to record job failure", error=message)

    async def _sleep(self, seconds: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)


async def _call_handler(handler: JobHandler, job: Job) -> Any:
    result = handler(job)
    if inspect.isawaitable(result):
        result = await result
    return result
