"""Async job queue API over the durable :class:`JobStore`."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Sequence, TypeVar
from uuid import uuid4

import structlog

from ..domain.models import AnalysisJob, JobHandle, JobState
from ..domain.queues import QUEUE_CATALOG, QueueName
from ..domain.retry import RetryPolicy
from ..exceptions import (
    JobFailedError,
    SubtaskTimeoutError,
    UnknownJobTypeError,
    is_retryable,
)
from ..infrastructure.queue import JobStore

T = TypeVar("T")

logger = structlog.get_logger(__name__)


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


def _plain(value: str) -> str:
    """Collapse str-valued enum members to their plain string value."""

    return value.value if isinstance(value, Enum) else str(value)


class JobQueue:
    """Named queues with priority ordering, bounded retries and waiters.

    Completion is observed by polling the store, which also covers jobs
    finished by workers in other processes. Workers in this process call
    :meth:`record_success`/:meth:`record_failure`, which wake local waiters
    immediately.
    """

    def __init__(
        self,
        *,
        store: JobStore,
        retry_policy: RetryPolicy | None = None,
        default_priority: int = 10,
        default_max_attempts: int = 3,
        poll_interval_seconds: float = 0.25,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy()
        self._default_priority = default_priority
        self._default_max_attempts = default_max_attempts
        self._poll_interval = poll_interval_seconds
        self._clock = clock or _default_clock
        self._waiters: dict[str, set[asyncio.Event]] = {}

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    # Producer side ------------------------------------------------------

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Mapping[str, Any],
        *,
        priority: int | None = None,
        max_attempts: int | None = None,
        dedup_key: str | None = None,
    ) -> JobHandle:
        """Durably append a job and return without waiting for it."""

        queue_name = _plain(queue_name)
        job_type = _plain(job_type)
        queue = self._resolve_queue(queue_name, job_type)
        resolved_priority = self._default_priority if priority is None else int(priority)
        if resolved_priority < 1:
            raise ValueError("priority must be >= 1")
        attempts = self._default_max_attempts if max_attempts is None else int(max_attempts)
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        now = self._clock()
        job = AnalysisJob(
            id=uuid4().hex,
            queue_name=queue.value,
            job_type=job_type,
            payload=dict(payload),
            priority=resolved_priority,
            attempts_made=0,
            max_attempts=attempts,
            state=JobState.WAITING,
            enqueued_at=now,
            updated_at=now,
            available_at=now,
            dedup_key=dedup_key,
        )
        stored = await self._run_sync(self._store.enqueue, job)
        if stored.id != job.id:
            logger.debug(
                "queue.job.deduplicated",
                queue=queue.value,
                job_type=job_type,
                job_id=stored.id,
            )
        else:
            logger.debug(
                "queue.job.enqueued",
                queue=queue.value,
                job_type=job_type,
                job_id=stored.id,
                priority=resolved_priority,
            )
        return JobHandle(job_id=stored.id, queue_name=stored.queue_name, job_type=stored.job_type)

    async def await_completion(self, handle: JobHandle, *, timeout: float | None = None) -> Any:
        """Wait until the job is terminal and return its result.

        Raises :class:`JobFailedError` for a failed job and
        :class:`SubtaskTimeoutError` when ``timeout`` elapses first. The
        waiter registration is removed on every exit path.
        """

        event = asyncio.Event()
        self._waiters.setdefault(handle.job_id, set()).add(event)
        try:
            if timeout is None:
                return await self._wait_for_terminal(handle.job_id, event)
            return await asyncio.wait_for(
                self._wait_for_terminal(handle.job_id, event), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            raise SubtaskTimeoutError(
                f"job {handle.job_id} on {handle.queue_name} did not finish within {timeout}s"
            ) from exc
        finally:
            waiters = self._waiters.get(handle.job_id)
            if waiters is not None:
                waiters.discard(event)
                if not waiters:
                    del self._waiters[handle.job_id]

    # Consumer side ------------------------------------------------------

    async def claim(self, queue_name: str, job_types: Sequence[str]) -> AnalysisJob | None:
        """Atomically claim the next eligible job of ``queue_name``."""

        return await self._run_sync(
            self._store.acquire_for_processing,
            queue_name=_plain(queue_name),
            job_types=tuple(_plain(job_type) for job_type in job_types),
            now=self._clock(),
        )

    async def record_success(self, job: AnalysisJob, result: Any) -> AnalysisJob:
        updated = await self._run_sync(
            self._store.mark_completed, job.id, result=result, now=self._clock()
        )
        logger.info(
            "queue.job.completed",
            queue=job.queue_name,
            job_type=job.job_type,
            job_id=job.id,
            attempt=job.attempts_made,
        )
        self._notify(job.id)
        return updated

    async def record_failure(self, job: AnalysisJob, exc: BaseException) -> AnalysisJob:
        """Reschedule ``job`` with backoff or fail it for good."""

        error = f"{type(exc).__name__}: {exc}"
        now = self._clock()
        if is_retryable(exc) and job.attempts_made < job.max_attempts:
            available_at = self._retry_policy.next_available_at(job.attempts_made, now=now)
            updated = await self._run_sync(
                self._store.mark_retry, job.id, error=error, available_at=available_at, now=now
            )
            logger.warning(
                "queue.job.retry_scheduled",
                queue=job.queue_name,
                job_type=job.job_type,
                job_id=job.id,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
                available_at=available_at.isoformat(),
                error=error,
            )
            return updated

        updated = await self._run_sync(self._store.mark_failed, job.id, error=error, now=now)
        logger.error(
            "queue.job.failed",
            queue=job.queue_name,
            job_type=job.job_type,
            job_id=job.id,
            attempt=job.attempts_made,
            error=error,
        )
        self._notify(job.id)
        return updated

    async def recover_stalled(self, *, stall_timeout_seconds: float) -> list[AnalysisJob]:
        """Redeliver jobs whose worker never acknowledged them."""

        now = self._clock()
        recovered = await self._run_sync(
            self._store.recover_stalled,
            stalled_before=now - timedelta(seconds=stall_timeout_seconds),
            now=now,
        )
        for job in recovered:
            logger.warning(
                "queue.job.stalled",
                queue=job.queue_name,
                job_id=job.id,
                state=job.state.value,
            )
            if job.state.is_terminal:
                self._notify(job.id)
        return recovered

    # Operational reads --------------------------------------------------

    async def get(self, job_id: str) -> AnalysisJob | None:
        return await self._run_sync(self._store.get, job_id)

    async def counts(self, queue_name: str) -> dict[str, int]:
        return await self._run_sync(self._store.counts, queue_name)

    async def list_failed(self, queue_name: str, *, limit: int = 50) -> list[AnalysisJob]:
        return await self._run_sync(self._store.list_failed, queue_name, limit=limit)

    @property
    def pending_waiters(self) -> int:
        return sum(len(events) for events in self._waiters.values())

    def close(self) -> None:
        self._store.close()

    # Helpers ------------------------------------------------------------

    async def _wait_for_terminal(self, job_id: str, event: asyncio.Event) -> Any:
        while True:
            job = await self._run_sync(self._store.get, job_id)
            if job is None:
                raise JobFailedError(job_id, "job not found")
            if job.state is JobState.COMPLETED:
                return job.result
            if job.state is JobState.FAILED:
                raise JobFailedError(job_id, job.last_error)
            try:
                await asyncio.wait_for(event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
            event.clear()

    def _notify(self, job_id: str) -> None:
        for event in self._waiters.get(job_id, ()):
            event.set()

    @staticmethod
    def _resolve_queue(queue_name: str, job_type: str) -> QueueName:
        try:
            queue = QueueName(queue_name)
        except ValueError as exc:
            raise UnknownJobTypeError(f"unknown queue {queue_name!r}") from exc
        if not any(job_type == member.value for member in QUEUE_CATALOG[queue]):
            raise UnknownJobTypeError(f"job type {job_type!r} is not handled by {queue.value}")
        return queue


__all__ = ["JobQueue"]
