"""
Job queue persistence models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobqueue.infra.database import Base


def utc_now() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    DEAD = "dead"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.DEAD.value)

# Statuses that hold an idempotency key; a dead job releases it
IDEMPOTENT_STATUSES = (
    JobStatus.PENDING.value,
    JobStatus.RUNNING.value,
    JobStatus.COMPLETED.value,
)

_ACTIVE_KEY_WHERE = text(
    "idempotency_key IS NOT NULL "
    "AND status IN ('pending', 'running', 'completed')"
)


class Job(Base):
    """
    A unit of deferred work.

    Status only moves pending -> running -> {completed | pending | dead};
    completed and dead rows are kept as permanent history.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Handler dispatch key"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Handler-owned parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|running|completed|dead",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher is claimed first"
    )
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utc_now,
        comment="Earliest time the job may be claimed",
    )

    # Lifecycle timestamps
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last failure reason"
    )

    # Recurrence metadata (stored, not evaluated)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cron_expression: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Tracing and deduplication
    idempotency_key: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Caller-supplied deduplication token"
    )
    created_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Origin tag"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utc_now,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'dead')",
            name="jobs_status_check",
        ),
        CheckConstraint("max_retries >= 0", name="jobs_max_retries_check"),
        CheckConstraint("retry_count >= 0", name="jobs_retry_count_check"),
        Index("ix_jobs_status_run_at", "status", "run_at"),
        Index("ix_jobs_job_type_status", "job_type", "status"),
        Index(
            "ix_jobs_idempotency_key_active",
            "idempotency_key",
            unique=True,
            postgresql_where=_ACTIVE_KEY_WHERE,
            sqlite_where=_ACTIVE_KEY_WHERE,
        ),
    )

    def is_terminal(self) -> bool:
        """Check if job reached completed or dead."""
        return self.status in TERMINAL_STATUSES

    def retries_exhausted_after_failure(self) -> bool:
        """Whether one more failure moves this job to the dead-letter store."""
        return self.retry_count + 1 >= self.max_retries

    def __repr__(self) -> str:
        return f"<Job {self.id} type={self.job_type} status={self.status}>"


class DeadLetterEntry(Base):
    """Immutable snapshot of a job that exhausted its retries."""

    __tablename__ = "dead_letter_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    original_job_id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, comment="Job this entry was taken from"
    )
    job_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    original_created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False
    )
    dead_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utc_now,
    )

    __table_args__ = (
        Index("ix_dead_letter_jobs_dead_at", "dead_at"),
        Index("ix_dead_letter_jobs_job_type", "job_type"),
    )
