"""Job Queue CLI - Main Entry Point"""

import asyncio
import json
import signal
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Optional, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from jobqueue.config.logging import setup_logging
from jobqueue.config.settings import Settings, settings
from jobqueue.infra.database import Database
from jobqueue.v1.core.exceptions import JobStoreError
from jobqueue.v1.jobs.handlers import reap_stale_jobs
from jobqueue.v1.jobs.policy import RetryPolicy
from jobqueue.v1.jobs.registry_init import build_job_registry
from jobqueue.v1.jobs.schemas import DeadLetterResponse, JobCreate
from jobqueue.v1.jobs.store import JobStore
from jobqueue.v1.jobs.worker import JobWorker

from .utils.formatting import (
    create_dead_letter_table,
    create_queue_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()

T = TypeVar("T")

# Create main Typer app
app = typer.Typer(
    name="jobqueue",
    help="📬 Job Queue - worker and operator commands",
    rich_markup_mode="rich",
)


def _run(
    operation: Callable[[JobStore, RetryPolicy], Awaitable[T]],
    app_settings: Settings | None = None,
) -> T:
    """Run one async store operation against a short-lived database."""
    app_settings = app_settings or settings

    async def runner() -> T:
        database = Database(app_settings)
        try:
            store = JobStore(database.SessionLocal, app_settings)
            policy = RetryPolicy(database.SessionLocal, app_settings)
            return await operation(store, policy)
        finally:
            await database.close()

    return asyncio.run(runner())


@app.command()
def worker(
    handlers: Optional[list[str]] = typer.Option(
        None,
        "--handlers",
        "-H",
        help="Handler registrar as module:function (repeatable)",
    ),
    poll_interval_ms: Optional[int] = typer.Option(
        None, "--poll-interval-ms", min=1, help="Idle poll interval override"
    ),
):
    """⚙️ Run a job worker until interrupted"""
    worker_settings = settings
    if poll_interval_ms:
        worker_settings = settings.model_copy(
            update={"job_poll_interval_ms": poll_interval_ms}
        )
    setup_logging(worker_settings)

    async def run_worker() -> None:
        database = Database(worker_settings)
        try:
            store = JobStore(database.SessionLocal, worker_settings)
            policy = RetryPolicy(database.SessionLocal, worker_settings)
            try:
                registry = build_job_registry(
                    store, policy, worker_settings, handlers or []
                )
            except (ImportError, ValueError) as e:
                print_error(f"Failed to load handlers: {e}")
                raise typer.Exit(1) from None

            job_worker = JobWorker(store, policy, registry, worker_settings)

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, job_worker.stop)

            await job_worker.start()
        finally:
            await database.close()

    asyncio.run(run_worker())


@app.command()
def enqueue(
    job_type: str = typer.Argument(..., help="Job type"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON object payload"),
    priority: int = typer.Option(0, "--priority", help="Higher claims first"),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", min=0, help="Failures allowed before dead-lettering"
    ),
    delay: float = typer.Option(
        0.0, "--delay", min=0, help="Seconds before the job becomes eligible"
    ),
    idempotency_key: Optional[str] = typer.Option(
        None, "--idempotency-key", "-k", help="Deduplication key"
    ),
    created_by: str = typer.Option("cli", "--created-by", help="Origin tag"),
):
    """➕ Enqueue a job"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON payload: {e}")
        raise typer.Exit(1) from None

    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    try:
        job_create = JobCreate(
            job_type=job_type,
            payload=payload_data,
            priority=priority,
            max_retries=max_retries,
            run_at=datetime.now(UTC) + timedelta(seconds=delay) if delay else None,
            idempotency_key=idempotency_key,
            created_by=created_by,
        )
    except ValidationError as e:
        print_error(f"Invalid job: {e.errors()[0]['msg']}")
        raise typer.Exit(1) from None

    try:
        job_id = _run(lambda store, policy: store.enqueue(job_create))
    except JobStoreError as e:
        print_error(f"Failed to enqueue job: {e.message}")
        raise typer.Exit(1) from None

    print_success(f"Enqueued {job_type} job {job_id}")


@app.command()
def depth():
    """📊 Show queue depth"""

    async def collect(store: JobStore, policy: RetryPolicy):
        return await store.queue_depth(), await store.count_by_status()

    pending, by_status = _run(collect)
    console.print(create_queue_panel(pending, by_status))


@app.command("dead-letters")
def dead_letters(
    limit: int = typer.Option(
        settings.job_dead_letter_list_limit,
        "--limit",
        "-n",
        min=1,
        max=1000,
        help="Maximum entries to show",
    ),
):
    """🪦 List dead-letter entries, newest first"""
    entries = _run(lambda store, policy: store.list_dead_letters(limit))

    if not entries:
        print_info("Dead-letter store is empty")
        return

    rows = [DeadLetterResponse.model_validate(entry).model_dump() for entry in entries]
    console.print(create_dead_letter_table(rows))


@app.command()
def reap(
    stale_after: int = typer.Option(
        settings.job_stale_after_s,
        "--stale-after",
        min=1,
        help="Seconds after which a running job is treated as abandoned",
    ),
):
    """🧹 Return abandoned running jobs to the retry path"""
    outcomes = _run(
        lambda store, policy: reap_stale_jobs(store, policy, stale_after)
    )

    if not outcomes:
        print_info("No stale jobs found")
        return

    for outcome, job_ids in outcomes.items():
        print_warning(f"{outcome}: {len(job_ids)} job(s)")


@app.command("init-db")
def init_db():
    """🗄️ Create queue tables from metadata (local and test databases)"""

    async def create() -> None:
        database = Database(settings)
        try:
            await database.create_all()
        finally:
            await database.close()

    asyncio.run(create())
    print_success("Queue tables created")


@app.command()
def quickstart():
    """🚀 Quick start guide"""
    console.print(Panel(
        f"📬 [bold cyan]Job Queue Quick Start[/bold cyan]\n\n"
        f"[bold]1. Enqueue a Job[/bold]\n"
        f"   [dim]jobqueue enqueue email.send --payload '{{\"to\": \"a@b.c\"}}'[/dim]\n\n"
        f"[bold]2. Run a Worker[/bold]\n"
        f"   [dim]jobqueue worker --handlers myapp.jobs:register[/dim]\n\n"
        f"[bold]3. Check Queue Depth[/bold]\n"
        f"   [dim]jobqueue depth[/dim]\n\n"
        f"[bold]4. Inspect Dead Letters[/bold]\n"
        f"   [dim]jobqueue dead-letters --limit 20[/dim]\n\n"
        f"[bold yellow]Tip:[/bold yellow] Use [cyan]--help[/cyan] with any command for more options!",
        title="Quick Start Guide",
        border_style="green"
    ))


if __name__ == "__main__":
    app()
