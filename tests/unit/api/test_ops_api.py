from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from src.memolens.core.config import AppConfig
from src.memolens.domain.queues import JobType, QueueName
from src.memolens.exceptions import MalformedPayloadError
from src.memolens.lifecycle import MemolensRuntime, build_runtime
from src.memolens.main import create_app
from tests.mocks.cache_backends import InMemorySharedCache
from tests.mocks.invokers import ScriptedInvoker

PAYLOAD = {"media": "aGVsbG8=", "fingerprint": "f" * 64}


@pytest.fixture
def runtime() -> MemolensRuntime:
    config = AppConfig(
        queue_dsn=":memory:",
        result_database_url="sqlite:///:memory:",
        log_json=False,
    )
    return build_runtime(config, invoker=ScriptedInvoker(), l2=InMemorySharedCache())


async def _seed(runtime: MemolensRuntime) -> None:
    queue = runtime.queue
    await queue.enqueue(QueueName.CAPTIONING, JobType.GENERATE_CAPTION, PAYLOAD)
    await queue.enqueue(QueueName.CAPTIONING, JobType.GENERATE_CAPTION, PAYLOAD)
    job = await queue.claim(QueueName.CAPTIONING, [JobType.GENERATE_CAPTION])
    await queue.record_failure(job, MalformedPayloadError("payload is missing 'media'"))
    await runtime.cache.set("caption:abc", "a dog")


@pytest.mark.unit
def test_queue_overview_lists_catalogue_with_counts(runtime: MemolensRuntime) -> None:
    asyncio.run(_seed(runtime))
    app = create_app(runtime=runtime, start_workers=False)

    with TestClient(app) as client:
        response = client.get("/ops/queues")

    assert response.status_code == 200
    queues = {item["queue"]: item for item in response.json()["queues"]}
    assert len(queues) == 7
    assert queues["captioning"]["job_types"] == ["generate-caption"]
    assert queues["captioning"]["counts"] == {
        "waiting": 1,
        "active": 0,
        "completed": 0,
        "failed": 1,
    }
    assert queues["notification"]["counts"]["waiting"] == 0


@pytest.mark.unit
def test_queue_detail_and_failed_jobs(runtime: MemolensRuntime) -> None:
    asyncio.run(_seed(runtime))
    app = create_app(runtime=runtime, start_workers=False)

    with TestClient(app) as client:
        detail = client.get("/ops/queues/captioning")
        failed = client.get("/ops/queues/captioning/failed", params={"limit": 10})
        missing = client.get("/ops/queues/thumbnails")
        bad_limit = client.get("/ops/queues/captioning/failed", params={"limit": 0})

    assert detail.status_code == 200
    assert detail.json()["counts"]["failed"] == 1
    jobs = failed.json()["jobs"]
    assert len(jobs) == 1
    assert jobs[0]["state"] == "failed"
    assert jobs[0]["attempts_made"] == 1
    assert jobs[0]["last_error"].startswith("MalformedPayloadError")
    assert missing.status_code == 404
    assert bad_limit.status_code == 422


@pytest.mark.unit
def test_cache_stats_endpoint(runtime: MemolensRuntime) -> None:
    asyncio.run(_seed(runtime))
    app = create_app(runtime=runtime, start_workers=False)

    with TestClient(app) as client:
        response = client.get("/ops/cache")

    assert response.status_code == 200
    assert response.json()["l1_entries"] == 1
    assert response.json()["l2_errors"] == 0


@pytest.mark.unit
def test_lifespan_starts_and_stops_workers(runtime: MemolensRuntime) -> None:
    app = create_app(runtime=runtime)

    with TestClient(app):
        assert runtime.started
        assert runtime.pool.running

    assert not runtime.started
    assert not runtime.pool.running
    assert runtime.invoker.closed
