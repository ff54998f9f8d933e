"""Queue worker pulling jobs from one named queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..cache import TwoTierCache
from ..domain.models import AnalysisJob
from ..domain.queues import result_cache_key
from ..exceptions import TransientProviderError, UnknownJobTypeError
from ..services.job_queue import JobQueue
from .handlers import Handler


class QueueWorker:
    """Claims jobs of one queue, runs their handler and acknowledges the outcome.

    A job interrupted by cancellation is left ``active`` in the store; the
    stall recovery sweep hands it to another worker later. With a ``cache``
    every successful analysis result is also written under its content key,
    so a job that outlives the caller waiting on it still serves later calls.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        queue_name: str,
        job_types: Sequence[str],
        handlers: Mapping[str, Handler],
        poll_interval: float = 0.5,
        job_timeout_seconds: float = 120.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        cache: TwoTierCache | None = None,
        cache_ttl_seconds: int = 86_400,
    ) -> None:
        self._queue = queue
        self.queue_name = queue_name
        self.job_types = tuple(job_types)
        self._handlers = dict(handlers)
        self._poll_interval = poll_interval
        self._job_timeout = job_timeout_seconds
        self._sleep = sleep or asyncio.sleep
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # High-level control flow
    # ------------------------------------------------------------------
    async def run_once(self, *, shutdown_event: asyncio.Event | None = None) -> bool:
        """Claim and process at most one job; return whether one was found."""

        if shutdown_event is not None and shutdown_event.is_set():
            return False

        job = await self._queue.claim(self.queue_name, self.job_types)
        if job is None:
            return False
        await self.process_job(job)
        return True

    async def run_forever(self, *, worker_id: int, shutdown_event: asyncio.Event) -> None:
        """Continuously process jobs until ``shutdown_event`` is set."""

        self._logger.debug("QueueWorker %s started on %s", worker_id, self.queue_name)
        try:
            while not shutdown_event.is_set():
                try:
                    has_job = await self.run_once(shutdown_event=shutdown_event)
                except Exception:
                    self._logger.exception(
                        "QueueWorker %s could not reach the queue store", worker_id
                    )
                    has_job = False
                if not has_job:
                    await self._idle(shutdown_event)
        except asyncio.CancelledError:
            self._logger.debug("QueueWorker %s cancelled", worker_id)
            raise

    async def process_job(self, job: AnalysisJob) -> None:
        """Run the handler for ``job`` and record success or failure."""

        handler = self._handlers.get(job.job_type)
        try:
            if handler is None:
                raise UnknownJobTypeError(f"no handler registered for {job.job_type!r}")
            result = await asyncio.wait_for(handler(job.payload), timeout=self._job_timeout)
        except asyncio.CancelledError:
            self._logger.warning(
                "Job %s on %s interrupted; it will be redelivered", job.id, self.queue_name
            )
            raise
        except asyncio.TimeoutError:
            await self._queue.record_failure(
                job,
                TransientProviderError(f"handler exceeded {self._job_timeout}s"),
            )
        except Exception as exc:
            self._logger.debug("Job %s raised %r", job.id, exc)
            await self._queue.record_failure(job, exc)
        else:
            await self._cache_result(job, result)
            await self._queue.record_success(job, result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _cache_result(self, job: AnalysisJob, result: Any) -> None:
        if self._cache is None or not isinstance(job.payload, Mapping):
            return
        key = result_cache_key(job.job_type, job.payload, result)
        if key is not None:
            await self._cache.set(key, result, self._cache_ttl)

    async def _idle(self, shutdown_event: asyncio.Event) -> None:
        if self._sleep is not asyncio.sleep:
            await self._sleep(self._poll_interval)
            return
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass


__all__ = ["QueueWorker"]
