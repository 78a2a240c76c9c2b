"""
Job queue API endpoints.

Provides enqueue plus read-only operational views: job lookup, queue depth
and the dead-letter listing.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.infra.database import Database, get_database
from jobqueue.v1.core.exceptions import NotFoundError, create_success_response
from jobqueue.v1.jobs.schemas import (
    DeadLetterListResponse,
    DeadLetterResponse,
    JobCreate,
    JobEnqueueResponse,
    JobResponse,
    QueueDepthResponse,
)
from jobqueue.v1.jobs.store import MAX_DEAD_LETTER_LIMIT, JobStore

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_store(
    database: Database = Depends(get_database), settings: Settings = SettingsDep
) -> JobStore:
    """Dependency injection for the job store."""
    return JobStore(database.SessionLocal, settings)


# Convenience type alias for dependency injection
JobStoreDep = Depends(get_job_store)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    job_create: JobCreate, store: JobStore = JobStoreDep
) -> dict[str, Any]:
    """Enqueue a new job (or return the live job for its idempotency key)."""
    job_id = await store.enqueue(job_create)

    logger.info(
        "Job enqueued via API",
        job_id=str(job_id),
        job_type=job_create.job_type,
        idempotency_key=job_create.idempotency_key,
    )

    return create_success_response(
        data=JobEnqueueResponse(job_id=job_id).model_dump(mode="json")
    )


@router.get("/stats/queue-depth", response_model=dict)
async def get_queue_depth(store: JobStore = JobStoreDep) -> dict[str, Any]:
    """Number of pending jobs."""
    depth = await store.queue_depth()
    return create_success_response(
        data=QueueDepthResponse(queue_depth=depth).model_dump()
    )


@router.get("/dead-letters", response_model=dict)
async def list_dead_letters(
    limit: int | None = Query(
        default=None, ge=1, le=MAX_DEAD_LETTER_LIMIT, description="Maximum results"
    ),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """List dead-letter entries, newest first."""
    effective_limit = limit or store.settings.job_dead_letter_list_limit
    entries = await store.list_dead_letters(effective_limit)

    response = DeadLetterListResponse(
        entries=[DeadLetterResponse.model_validate(entry) for entry in entries],
        limit=effective_limit,
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(job_id: UUID, store: JobStore = JobStoreDep) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await store.get_job(job_id)

    if not job:
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )
