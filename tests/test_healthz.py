from httpx import AsyncClient

from jobqueue.v1.jobs.schemas import JobCreate


async def test_health_check_success(async_client: AsyncClient):
    """Test health check endpoint returns correct format."""
    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True
    assert "data" in data

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["environment"] == "development"
    assert health_data["database"]["connected"] is True


async def test_health_check_response_structure(async_client: AsyncClient):
    """Test health check response envelope structure."""
    response = await async_client.get("/v1/healthz")

    data = response.json()

    # Check response envelope structure
    required_keys = ["ok", "data", "message", "request_id"]
    for key in required_keys:
        assert key in data

    # Check that request ID is present in headers
    assert "X-Request-ID" in response.headers


async def test_health_check_reports_queue_counts(async_client: AsyncClient, store, policy):
    await store.enqueue(JobCreate(job_type="work"))
    await store.enqueue(JobCreate(job_type="work"))
    dead_id = await store.enqueue(JobCreate(job_type="work", max_retries=0))
    await policy.fail(dead_id, "boom")

    response = await async_client.get("/v1/healthz")

    queue = response.json()["data"]["queue"]
    assert queue["queue_depth"] == 2
    assert queue["running_jobs"] == 0
    assert queue["dead_jobs"] == 1
