"""
Retry and dead-letter decisions for failed jobs.
"""

import copy
from datetime import timedelta
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.jobs.models import DeadLetterEntry, Job, JobStatus, utc_now
from jobqueue.v1.jobs.store import Clock

logger = get_logger(__name__)


class FailureOutcome(str, Enum):
    """What fail() did with a job."""

    MISSING = "missing"
    IGNORED = "ignored"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"


def backoff(retry_count: int, base_s: float = 1.0, max_s: float | None = None) -> float:
    """Delay in seconds before a job that has failed retry_count times runs again."""
    delay = base_s * (2**retry_count)
    if max_s is not None:
        delay = min(delay, max_s)
    return delay


class RetryPolicy:
    """Reschedules failed jobs with exponential backoff or dead-letters them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock

    def delay_for(self, retry_count: int) -> float:
        return backoff(
            retry_count,
            base_s=self.settings.job_backoff_base_s,
            max_s=self.settings.job_backoff_max_s,
        )

    async def fail(self, job_id: UUID, error_message: str) -> FailureOutcome:
        """
        Record a failed attempt.

        The job goes back to pending with run_at pushed out by the backoff
        delay, or, once retry_count reaches max_retries, is snapshotted into
        the dead-letter store and marked dead in the same transaction. Jobs
        that are missing or already terminal are left untouched.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job).where(Job.id == job_id).with_for_update()
            )
            job = result.scalar_one_or_none()

            if job is None:
                logger.info("Failure reported for unknown job", job_id=str(job_id))
                return FailureOutcome.MISSING

            if job.is_terminal():
                logger.info(
                    "Failure ignored for terminal job",
                    job_id=str(job_id),
                    status=job.status,
                )
                return FailureOutcome.IGNORED

            now = self.clock()
            exhausted = job.retries_exhausted_after_failure()
            new_retry_count = job.retry_count + 1

            job.failed_at = now
            job.error_message = error_message
            job.retry_count = new_retry_count
            job.updated_at = now

            if exhausted:
                session.add(
                    DeadLetterEntry(
                        id=uuid4(),
                        original_job_id=job.id,
                        job_type=job.job_type,
                        payload=copy.deepcopy(job.payload),
                        error_message=error_message,
                        retry_count=new_retry_count,
                        original_created_at=job.created_at,
                        dead_at=now,
                    )
                )
                job.status = JobStatus.DEAD.value
                await session.commit()

                logger.error(
                    "Job moved to dead letter store",
                    job_id=str(job_id),
                    job_type=job.job_type,
                    retry_count=new_retry_count,
                    error=error_message,
                )
                return FailureOutcome.DEAD_LETTERED

            delay_s = self.delay_for(new_retry_count)
            job.status = JobStatus.PENDING.value
            job.run_at = now + timedelta(seconds=delay_s)
            await session.commit()

            logger.info(
                "Job scheduled for retry",
                job_id=str(job_id),
                job_type=job.job_type,
                retry_count=new_retry_count,
                max_retries=job.max_retries,
                delay_s=delay_s,
                next_run_at=job.run_at.isoformat(),
            )
            return FailureOutcome.RETRIED
