import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

from jobqueue.config.settings import Settings
from jobqueue.infra.database import Database, get_database
from jobqueue.main import create_app
from jobqueue.v1.jobs.policy import RetryPolicy
from jobqueue.v1.jobs.routes import get_job_store
from jobqueue.v1.jobs.store import JobStore


class FakeClock:
    """Controllable UTC clock shared by the store and the retry policy."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def uncached_loggers():
    """Resolve the output stream on every log call so captured streams never go stale."""
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        job_poll_interval_ms=10,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, None]:
    """Create a fresh database with the queue tables for each test."""
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database: Database, test_settings: Settings, clock: FakeClock) -> JobStore:
    return JobStore(database.SessionLocal, test_settings, clock=clock)


@pytest.fixture
def policy(database: Database, test_settings: Settings, clock: FakeClock) -> RetryPolicy:
    return RetryPolicy(database.SessionLocal, test_settings, clock=clock)


@pytest.fixture
async def pg_database() -> AsyncGenerator[Database, None]:
    """PostgreSQL database for SKIP LOCKED tests, when one is configured."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or "postgresql" not in database_url:
        pytest.skip("No PostgreSQL database available for testing")

    db = Database(Settings(_env_file=None, database_url=database_url))
    await db.create_all()

    async def clean() -> None:
        async with db.engine.begin() as conn:
            await conn.execute(text("DELETE FROM dead_letter_jobs"))
            await conn.execute(text("DELETE FROM jobs"))

    await clean()
    yield db
    await clean()
    await db.close()


@pytest.fixture
def app(database: Database, store: JobStore):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()
    structlog.configure(cache_logger_on_first_use=False)

    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_job_store] = lambda: store

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
