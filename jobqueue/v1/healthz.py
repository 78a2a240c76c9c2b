from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.infra.database import get_session
from jobqueue.v1.core.exceptions import create_success_response
from jobqueue.v1.jobs.models import Job, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue status."""

    queue_depth: int = 0
    running_jobs: int = 0
    stale_jobs_count: int = 0
    dead_jobs: int = 0


class HealthResponse(BaseModel):
    """Health response with queue and database status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    queue: QueueHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception:
            # Queue stats are informational and do not fail the health check
            logger.exception("Queue health check failed")

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        queue=queue_health,
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        # Simple query to test database connectivity
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(
    session: AsyncSession, settings: Settings
) -> QueueHealth:
    """Count jobs by status and running jobs past the stale threshold."""
    status_result = await session.execute(
        select(Job.status, func.count(Job.id)).group_by(Job.status)
    )
    by_status = dict(status_result.all())

    stale_cutoff = datetime.now(UTC) - timedelta(seconds=settings.job_stale_after_s)
    stale_result = await session.execute(
        select(func.count(Job.id)).where(
            Job.status == JobStatus.RUNNING.value, Job.started_at < stale_cutoff
        )
    )

    return QueueHealth(
        queue_depth=by_status.get(JobStatus.PENDING.value, 0),
        running_jobs=by_status.get(JobStatus.RUNNING.value, 0),
        stale_jobs_count=stale_result.scalar() or 0,
        dead_jobs=by_status.get(JobStatus.DEAD.value, 0),
    )
