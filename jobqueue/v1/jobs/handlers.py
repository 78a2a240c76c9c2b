"""
Built-in job handlers.

Application handlers are registered by the host process; the queue itself
ships only the maintenance handler that reconciles abandoned claims.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.jobs.models import Job
from jobqueue.v1.jobs.policy import FailureOutcome, RetryPolicy
from jobqueue.v1.jobs.store import JobStore

logger = get_logger(__name__)

REAP_STALE_JOB_TYPE = "jobqueue.reap_stale"


async def reap_stale_jobs(
    store: JobStore,
    policy: RetryPolicy,
    stale_after_s: int,
    exclude: set[UUID] | None = None,
) -> dict[str, list[str]]:
    """
    Fail running jobs whose claim is older than stale_after_s.

    A worker that crashed mid-handler leaves its job running forever; routing
    the job through the retry policy puts it back on the queue (or into the
    dead-letter store) under the normal retry budget.
    """
    if stale_after_s <= 0:
        raise ValueError(f"stale_after_s must be positive, got: {stale_after_s}")

    cutoff = store.clock() - timedelta(seconds=stale_after_s)
    stale_jobs = await store.find_stale_running(cutoff)
    exclude = exclude or set()

    outcomes: dict[str, list[str]] = {}
    for job in stale_jobs:
        if job.id in exclude:
            continue
        outcome = await policy.fail(
            job.id, f"Job lease expired after {stale_after_s}s"
        )
        outcomes.setdefault(outcome.value, []).append(str(job.id))

    if outcomes:
        logger.warning(
            "Reaped stale jobs",
            stale_after_s=stale_after_s,
            retried=len(outcomes.get(FailureOutcome.RETRIED.value, [])),
            dead_lettered=len(outcomes.get(FailureOutcome.DEAD_LETTERED.value, [])),
        )

    return outcomes


class ReapStaleJobsHandler:
    """
    Job handler that reaps stale running jobs.

    Payload expected:
    {
        "stale_after_s": 3600  # optional, defaults to JOB_STALE_AFTER_S
    }
    """

    job_type = REAP_STALE_JOB_TYPE

    def __init__(self, store: JobStore, policy: RetryPolicy, settings: Settings):
        self.store = store
        self.policy = policy
        self.settings = settings

    async def __call__(self, job: Job) -> dict[str, Any]:
        stale_after_s = job.payload.get("stale_after_s", self.settings.job_stale_after_s)
        if not isinstance(stale_after_s, int) or isinstance(stale_after_s, bool):
            raise ValueError(f"stale_after_s must be an integer, got: {stale_after_s!r}")

        outcomes = await reap_stale_jobs(
            self.store, self.policy, stale_after_s, exclude={job.id}
        )
        return {"stale_after_s": stale_after_s, "outcomes": outcomes}
