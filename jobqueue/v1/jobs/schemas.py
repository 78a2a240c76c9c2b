"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobCreate(BaseModel):
    """Schema for enqueueing a new job."""

    job_type: str = Field(..., min_length=1, description="Job type identifier")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    priority: int = Field(default=0, description="Priority (higher claims first)")
    max_retries: int | None = Field(
        default=None, ge=0, description="Failures allowed before dead-lettering"
    )
    run_at: datetime | None = Field(
        default=None, description="Earliest time to run job"
    )
    is_recurring: bool = Field(default=False, description="Recurrence flag (metadata)")
    cron_expression: str | None = Field(
        default=None, description="Cron expression (metadata, not evaluated)"
    )
    idempotency_key: str | None = Field(
        default=None, min_length=1, description="Deduplication key"
    )
    created_by: str | None = Field(default=None, description="Origin tag")


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict[str, Any]
    status: str
    priority: int
    max_retries: int
    retry_count: int
    run_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error_message: str | None = None
    is_recurring: bool = False
    cron_expression: str | None = None
    idempotency_key: str | None = None
    created_by: str | None = None
    created_at: datetime


class DeadLetterResponse(BaseModel):
    """Schema for dead-letter entries."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    original_job_id: UUID
    job_type: str
    payload: dict[str, Any]
    error_message: str | None
    retry_count: int
    original_created_at: datetime
    dead_at: datetime


class DeadLetterListResponse(BaseModel):
    """Schema for dead-letter listing."""

    entries: list[DeadLetterResponse]
    limit: int


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID


class QueueDepthResponse(BaseModel):
    """Schema for queue depth."""

    queue_depth: int
