"""Read-only operational endpoints for queues and the cache."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..cache import TwoTierCache
from ..domain.models import AnalysisJob
from ..domain.queues import QUEUE_CATALOG, QueueName, describe_catalog
from ..exceptions import QueueUnavailableError
from ..services.job_queue import JobQueue

router = APIRouter(prefix="/ops", tags=["ops"])


def get_job_queue(request: Request) -> JobQueue:
    try:
        return request.app.state.runtime.queue  # type: ignore[attr-defined]
    except AttributeError as exc:
        raise RuntimeError("Runtime is not configured") from exc


def get_cache(request: Request) -> TwoTierCache:
    try:
        return request.app.state.runtime.cache  # type: ignore[attr-defined]
    except AttributeError as exc:
        raise RuntimeError("Runtime is not configured") from exc


def _resolve_queue(name: str) -> QueueName:
    try:
        return QueueName(name)
    except ValueError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"unknown queue {name!r}") from exc


def _job_view(job: AnalysisJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "job_type": job.job_type,
        "state": job.state.value,
        "priority": job.priority,
        "attempts_made": job.attempts_made,
        "max_attempts": job.max_attempts,
        "last_error": job.last_error,
        "enqueued_at": job.enqueued_at.isoformat(),
        "finished_at": job.finished_at.isoformat() if job.finished_at else None,
    }


@router.get("/queues")
async def list_queues(queue: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    """Return the queue catalogue with per-state job counts."""

    items = []
    for entry in describe_catalog():
        try:
            counts = await queue.counts(str(entry["queue"]))
        except QueueUnavailableError as exc:
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        items.append({**entry, "counts": counts})
    return {"queues": items}


@router.get("/queues/{name}")
async def queue_detail(name: str, queue: JobQueue = Depends(get_job_queue)) -> dict[str, Any]:
    queue_name = _resolve_queue(name)
    try:
        counts = await queue.counts(queue_name.value)
    except QueueUnavailableError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "queue": queue_name.value,
        "job_types": [job_type.value for job_type in QUEUE_CATALOG[queue_name]],
        "counts": counts,
    }


@router.get("/queues/{name}/failed")
async def failed_jobs(
    name: str,
    limit: int = Query(default=50, ge=1, le=500),
    queue: JobQueue = Depends(get_job_queue),
) -> dict[str, Any]:
    queue_name = _resolve_queue(name)
    try:
        jobs = await queue.list_failed(queue_name.value, limit=limit)
    except QueueUnavailableError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"queue": queue_name.value, "jobs": [_job_view(job) for job in jobs]}


@router.get("/cache")
async def cache_stats(cache: TwoTierCache = Depends(get_cache)) -> dict[str, int]:
    return cache.stats()


__all__ = ["router"]
