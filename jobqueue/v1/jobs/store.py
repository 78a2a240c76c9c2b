"""
Job store: persistence boundary for jobs and dead-letter entries.

Claiming is the one operation with a concurrency contract: the select of the
next eligible job and its transition to running happen atomically, and a
claimer never waits behind another claimer's in-flight transaction. On
PostgreSQL this is a single UPDATE over a FOR UPDATE SKIP LOCKED subquery;
elsewhere it is a compare-and-swap keyed on status = pending.
"""

import hashlib
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.core.exceptions import JobStoreError
from jobqueue.v1.jobs.models import (
    IDEMPOTENT_STATUSES,
    DeadLetterEntry,
    Job,
    JobStatus,
    utc_now,
)
from jobqueue.v1.jobs.schemas import JobCreate

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# Dialects whose UPDATE accepts a SKIP LOCKED subquery on the same table
SKIP_LOCKED_DIALECTS = frozenset({"postgresql"})

MAX_DEAD_LETTER_LIMIT = 1000

# Oldest-of-highest-priority wins
CLAIM_ORDER = (Job.priority.desc(), Job.run_at.asc(), Job.created_at.asc())


class JobStore:
    """Durable job queue operations over an async session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock

    async def enqueue(self, job_create: JobCreate) -> UUID:
        """
        Enqueue a new job, or return the existing one for a live idempotency key.

        Args:
            job_create: Job creation parameters

        Returns:
            Identity of the created (or deduplicated) job

        Raises:
            JobStoreError: the write was not confirmed; the caller may retry
        """
        try:
            return await self._enqueue(job_create)
        except SQLAlchemyError as e:
            logger.error(
                "Enqueue failed",
                job_type=job_create.job_type,
                idempotency_key=job_create.idempotency_key,
                error=str(e),
            )
            raise JobStoreError(
                "Enqueue not confirmed", details={"job_type": job_create.job_type}
            ) from e

    async def _enqueue(self, job_create: JobCreate) -> UUID:
        key = job_create.idempotency_key

        async with self.session_factory() as session:
            if key:
                existing_id = await self._find_by_idempotency_key(session, key)
                if existing_id:
                    logger.info(
                        "Job deduplicated",
                        job_id=str(existing_id),
                        job_type=job_create.job_type,
                        idempotency_key=key,
                    )
                    return existing_id

            now = self.clock()
            max_retries = (
                job_create.max_retries
                if job_create.max_retries is not None
                else self.settings.job_default_max_retries
            )
            job = Job(
                id=uuid4(),
                job_type=job_create.job_type,
                payload=job_create.payload,
                status=JobStatus.PENDING.value,
                priority=job_create.priority,
                max_retries=max_retries,
                retry_count=0,
                run_at=_as_utc(job_create.run_at) if job_create.run_at else now,
                is_recurring=job_create.is_recurring,
                cron_expression=job_create.cron_expression,
                idempotency_key=key,
                created_by=job_create.created_by,
                created_at=now,
                updated_at=now,
            )

            try:
                session.add(job)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # Race: another enqueue with the same key won the unique index
                if key:
                    existing_id = await self._find_by_idempotency_key(session, key)
                    if existing_id:
                        logger.info(
                            "Job deduplicated after insert race",
                            job_id=str(existing_id),
                            idempotency_key=key,
                        )
                        return existing_id
                raise

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_type=job.job_type,
            priority=job.priority,
            max_retries=job.max_retries,
            run_at=job.run_at.isoformat(),
            idempotency_key=key,
        )
        return job.id

    async def _find_by_idempotency_key(
        self, session: AsyncSession, key: str
    ) -> UUID | None:
        """Find the job currently holding an idempotency key."""
        result = await session.execute(
            select(Job.id)
            .where(
                and_(
                    Job.idempotency_key == key,
                    Job.status.in_(IDEMPOTENT_STATUSES),
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def claim(self, job_types: Iterable[str] | None = None) -> Job | None:
        """
        Claim the next eligible job and mark it running.

        Args:
            job_types: Optional job type filter; empty or None claims any type

        Returns:
            The claimed job, or None when nothing is eligible
        """
        types = sorted(set(job_types)) if job_types else None

        async with self.session_factory() as session:
            if session.get_bind().dialect.name in SKIP_LOCKED_DIALECTS:
                job = await self._claim_skip_locked(session, types)
            else:
                job = await self._claim_compare_and_swap(session, types)

        if job is not None:
            logger.debug(
                "Job claimed",
                job_id=str(job.id),
                job_type=job.job_type,
                priority=job.priority,
                retry_count=job.retry_count,
            )
        return job

    def _eligible(self, now: datetime, types: list[str] | None):
        conditions = [Job.status == JobStatus.PENDING.value, Job.run_at <= now]
        if types:
            conditions.append(Job.job_type.in_(types))
        return and_(*conditions)

    async def _claim_skip_locked(
        self, session: AsyncSession, types: list[str] | None
    ) -> Job | None:
        now = self.clock()
        candidate = (
            select(Job.id)
            .where(self._eligible(now, types))
            .order_by(*CLAIM_ORDER)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        result = await session.execute(
            update(Job)
            .where(Job.id == candidate)
            .values(status=JobStatus.RUNNING.value, started_at=now, updated_at=now)
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        job = result.scalar_one_or_none()
        await session.commit()
        return job

    async def _claim_compare_and_swap(
        self, session: AsyncSession, types: list[str] | None
    ) -> Job | None:
        for attempt in range(1, self.settings.job_claim_max_attempts + 1):
            now = self.clock()
            candidate = await session.execute(
                select(Job.id)
                .where(self._eligible(now, types))
                .order_by(*CLAIM_ORDER)
                .limit(1)
            )
            job_id = candidate.scalar_one_or_none()
            if job_id is None:
                return None

            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
                .values(
                    status=JobStatus.RUNNING.value, started_at=now, updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount == 1:
                return await session.get(Job, job_id, populate_existing=True)

            logger.debug("Claim race lost", job_id=str(job_id), attempt=attempt)

        return None

    async def complete(self, job_id: UUID) -> bool:
        """
        Mark a running job completed.

        Only running -> completed is allowed. A job that went back to pending
        (reaped while its handler was still running) or is already terminal
        is left as is.

        Returns:
            True if the job transitioned, False if it was not running or missing
        """
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
                .values(
                    status=JobStatus.COMPLETED.value, completed_at=now, updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        return result.rowcount > 0

    async def get_job(self, job_id: UUID) -> Job | None:
        """Get job by ID."""
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def queue_depth(self) -> int:
        """Count pending jobs, eligible or scheduled for later."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Job.id)).where(
                    Job.status == JobStatus.PENDING.value
                )
            )
            return result.scalar() or 0

    async def count_by_status(self) -> dict[str, int]:
        """Job counts grouped by status."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            return {status: count for status, count in result.all()}

    async def list_dead_letters(self, limit: int | None = None) -> list[DeadLetterEntry]:
        """List dead-letter entries, most recent first."""
        if limit is None:
            limit = self.settings.job_dead_letter_list_limit
        limit = max(1, min(limit, MAX_DEAD_LETTER_LIMIT))

        async with self.session_factory() as session:
            result = await session.execute(
                select(DeadLetterEntry)
                .order_by(DeadLetterEntry.dead_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_stale_running(self, older_than: datetime) -> list[Job]:
        """Running jobs claimed before the cutoff."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(
                    Job.status == JobStatus.RUNNING.value,
                    Job.started_at < older_than,
                )
                .order_by(Job.started_at.asc())
            )
            return list(result.scalars().all())


def make_idempotency_key(job_type: str, **params: Any) -> str:
    """Generate a deterministic idempotency key for a job."""
    # Create a stable hash from job type and parameters
    key_data = f"{job_type}:{sorted(params.items())}"
    return hashlib.sha256(key_data.encode()).hexdigest()[:32]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
