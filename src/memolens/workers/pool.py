"""Worker pool running queue workers and the stalled-job sweep."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Mapping

from ..cache import TwoTierCache
from ..domain.queues import QUEUE_CATALOG, QueueName
from ..services.job_queue import JobQueue
from .handlers import Handler
from .queue_worker import QueueWorker

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs ``concurrency`` workers for each served queue."""

    def __init__(
        self,
        *,
        queue: JobQueue,
        handlers: Mapping[str, Handler],
        queues: Iterable[QueueName | str] | None = None,
        concurrency: int = 2,
        poll_interval: float = 0.5,
        job_timeout_seconds: float = 120.0,
        stall_timeout_seconds: float = 300.0,
        sweep_interval_seconds: float | None = None,
        cache: TwoTierCache | None = None,
        cache_ttl_seconds: int = 86_400,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._queue = queue
        self._handlers = dict(handlers)
        self._queues = [QueueName(name) for name in (queues or QUEUE_CATALOG.keys())]
        self._concurrency = concurrency
        self._poll_interval = poll_interval
        self._job_timeout = job_timeout_seconds
        self._stall_timeout = stall_timeout_seconds
        self._sweep_interval = sweep_interval_seconds or max(1.0, stall_timeout_seconds / 2)
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds
        self._shutdown_event = asyncio.Event()
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return bool(self._worker_tasks) and not self._shutdown_event.is_set()

    def start(self) -> None:
        if self._worker_tasks:
            raise RuntimeError("worker pool already started")
        self._shutdown_event.clear()
        worker_id = 0
        for queue_name in self._queues:
            job_types = [job_type.value for job_type in QUEUE_CATALOG[queue_name]]
            for _ in range(self._concurrency):
                worker_id += 1
                worker = QueueWorker(
                    queue=self._queue,
                    queue_name=queue_name.value,
                    job_types=job_types,
                    handlers=self._handlers,
                    poll_interval=self._poll_interval,
                    job_timeout_seconds=self._job_timeout,
                    cache=self._cache,
                    cache_ttl_seconds=self._cache_ttl,
                )
                task = asyncio.create_task(
                    worker.run_forever(worker_id=worker_id, shutdown_event=self._shutdown_event),
                    name=f"memolens-worker-{queue_name.value}-{worker_id}",
                )
                self._worker_tasks.append(task)
        self._sweep_task = asyncio.create_task(
            self._run_stall_sweep(), name="memolens-stall-sweep"
        )
        logger.info(
            "Started %s workers across %s queues", len(self._worker_tasks), len(self._queues)
        )

    async def stop(self, *, drain: bool = True, grace_seconds: float = 30.0) -> None:
        """Stop all workers.

        With ``drain`` the in-flight jobs get up to ``grace_seconds`` to
        finish before the remaining workers are cancelled; without it they
        are cancelled immediately and stay ``active`` until the stall sweep
        requeues them.
        """

        self._shutdown_event.set()
        tasks = list(self._worker_tasks)
        if drain and tasks:
            _, pending = await asyncio.wait(tasks, timeout=grace_seconds)
            if pending:
                logger.warning("Cancelling %s workers still busy after grace period", len(pending))
        for task in tasks:
            task.cancel()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            tasks.append(self._sweep_task)
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Worker exited with an error", exc_info=result)
        self._worker_tasks.clear()
        self._sweep_task = None
        logger.info("Worker pool stopped (drain=%s)", drain)

    async def _run_stall_sweep(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                recovered = await self._queue.recover_stalled(
                    stall_timeout_seconds=self._stall_timeout
                )
            except Exception:
                logger.exception("Stalled job sweep failed")
            else:
                if recovered:
                    logger.info("Recovered %s stalled jobs", len(recovered))
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self._sweep_interval
                )
            except asyncio.TimeoutError:
                continue


__all__ = ["WorkerPool"]
