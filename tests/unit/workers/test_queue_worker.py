from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from src.memolens.cache import MISS, TwoTierCache
from src.memolens.domain.models import JobState
from src.memolens.domain.queues import JobType, QueueName
from src.memolens.exceptions import TransientProviderError
from src.memolens.services.job_queue import JobQueue
from src.memolens.workers import QueueWorker

PAYLOAD = {"media": "aGVsbG8=", "fingerprint": "f" * 64}


def _worker(queue: JobQueue, handler, **kwargs) -> QueueWorker:
    return QueueWorker(
        queue=queue,
        queue_name=QueueName.SCENE_CLASSIFICATION.value,
        job_types=[JobType.CLASSIFY_SCENE.value],
        handlers={JobType.CLASSIFY_SCENE.value: handler} if handler else {},
        poll_interval=0.01,
        **kwargs,
    )


async def _enqueue(queue: JobQueue, **kwargs) -> str:
    handle = await queue.enqueue(
        QueueName.SCENE_CLASSIFICATION, JobType.CLASSIFY_SCENE, PAYLOAD, **kwargs
    )
    return handle.job_id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_once_completes_job_with_handler_result(job_queue: JobQueue) -> None:
    async def handler(payload: Mapping[str, Any]) -> dict[str, Any]:
        assert payload == PAYLOAD
        return {"label": "beach", "confidence": 0.9}

    job_id = await _enqueue(job_queue)
    worker = _worker(job_queue, handler)

    assert await worker.run_once() is True
    assert await worker.run_once() is False

    job = await job_queue.get(job_id)
    assert job.state is JobState.COMPLETED
    assert job.result == {"label": "beach", "confidence": 0.9}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_result_is_cached_under_content_key(
    job_queue: JobQueue, two_tier_cache: TwoTierCache
) -> None:
    async def handler(payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"label": "beach", "confidence": 0.9}

    await _enqueue(job_queue)
    worker = _worker(job_queue, handler, cache=two_tier_cache, cache_ttl_seconds=60)

    assert await worker.run_once() is True
    assert await two_tier_cache.get("scene:" + "f" * 64) == {"label": "beach", "confidence": 0.9}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_job_result_is_not_cached(
    job_queue: JobQueue, two_tier_cache: TwoTierCache
) -> None:
    async def handler(payload: Mapping[str, Any]) -> Any:
        raise TransientProviderError("model loading")

    await _enqueue(job_queue)
    await _worker(job_queue, handler, cache=two_tier_cache).run_once()

    assert await two_tier_cache.get("scene:" + "f" * 64) is MISS


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transient_failure_is_rescheduled(job_queue: JobQueue) -> None:
    async def handler(payload: Mapping[str, Any]) -> Any:
        raise TransientProviderError("model loading")

    job_id = await _enqueue(job_queue)
    await _worker(job_queue, handler).run_once()

    job = await job_queue.get(job_id)
    assert job.state is JobState.WAITING
    assert job.last_error == "TransientProviderError: model loading"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_handler_fails_job_immediately(job_queue: JobQueue) -> None:
    job_id = await _enqueue(job_queue)
    await _worker(job_queue, None).run_once()

    job = await job_queue.get(job_id)
    assert job.state is JobState.FAILED
    assert job.attempts_made == 1
    assert "UnknownJobTypeError" in job.last_error


@pytest.mark.unit
@pytest.mark.asyncio
async def test_slow_handler_counts_as_transient_failure(job_queue: JobQueue) -> None:
    async def handler(payload: Mapping[str, Any]) -> Any:
        await asyncio.sleep(5)

    job_id = await _enqueue(job_queue, max_attempts=1)
    await _worker(job_queue, handler, job_timeout_seconds=0.05).run_once()

    job = await job_queue.get(job_id)
    assert job.state is JobState.FAILED
    assert job.last_error.startswith("TransientProviderError: handler exceeded")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_job_stays_active_for_redelivery(job_queue: JobQueue) -> None:
    started = asyncio.Event()

    async def handler(payload: Mapping[str, Any]) -> Any:
        started.set()
        await asyncio.sleep(5)

    job_id = await _enqueue(job_queue)
    task = asyncio.create_task(_worker(job_queue, handler).run_once())
    await asyncio.wait_for(started.wait(), timeout=2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert (await job_queue.get(job_id)).state is JobState.ACTIVE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_forever_stops_on_shutdown(job_queue: JobQueue) -> None:
    processed: list[str] = []

    async def handler(payload: Mapping[str, Any]) -> str:
        processed.append(payload["fingerprint"])
        return "ok"

    await _enqueue(job_queue)
    await _enqueue(job_queue)
    shutdown = asyncio.Event()
    task = asyncio.create_task(
        _worker(job_queue, handler).run_forever(worker_id=1, shutdown_event=shutdown)
    )
    for _ in range(200):
        if len(processed) == 2:
            break
        await asyncio.sleep(0.01)
    shutdown.set()
    await asyncio.wait_for(task, timeout=2)

    assert len(processed) == 2
    assert (await job_queue.counts("scene-classification"))["completed"] == 2
