"""Explicit construction and shutdown of the pipeline runtime.

Nothing here is a module-level singleton: callers build a
:class:`MemolensRuntime` from an :class:`AppConfig`, start it, and shut it
down when done.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .cache import MemoryCache, RedisCacheBackend, SharedCacheBackend, TwoTierCache
from .core.config import AppConfig
from .db import create_result_engine, init_db
from .domain.retry import RetryPolicy
from .infrastructure.queue import JobStore, JobStoreConfig
from .providers import HttpProviderInvoker, ProviderInvoker
from .repositories import SqlAlchemyResultSink
from .services import AnalysisOrchestrator, AnalysisPipeline, JobQueue
from .workers import AnalysisHandlers, WorkerPool
from .workers.handlers import Notifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MemolensRuntime:
    """Container for the collaborators of one running pipeline."""

    config: AppConfig
    cache: TwoTierCache
    queue: JobQueue
    invoker: ProviderInvoker
    sink: SqlAlchemyResultSink
    handlers: AnalysisHandlers
    orchestrator: AnalysisOrchestrator
    pipeline: AnalysisPipeline
    pool: WorkerPool
    _started: bool = field(default=False, init=False)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, *, workers: bool = True) -> None:
        """Start the worker pool; the orchestrator is usable either way."""

        if self._started:
            return
        if workers:
            self.pool.start()
        self._started = True
        logger.info("memolens runtime started (workers=%s)", workers)

    async def shutdown(self, *, drain: bool | None = None) -> None:
        """Stop workers, then release cache, provider and queue resources."""

        drain = self.config.shutdown_drain if drain is None else drain
        if self.pool.running:
            await self.pool.stop(drain=drain, grace_seconds=self.config.shutdown_grace_seconds)
        await self.cache.aclose()
        await self.invoker.aclose()
        self.queue.close()
        self._started = False
        logger.info("memolens runtime stopped")


def build_runtime(
    config: AppConfig | None = None,
    *,
    invoker: ProviderInvoker | None = None,
    l2: SharedCacheBackend | None = None,
    notifier: Notifier | None = None,
    use_l2: bool = True,
) -> MemolensRuntime:
    """Wire every component from ``config``; collaborators may be injected."""

    cfg = config or AppConfig.build_default()

    if l2 is None and use_l2:
        l2 = RedisCacheBackend.from_url(
            cfg.redis_url,
            key_prefix=cfg.l2_key_prefix,
            socket_timeout=cfg.l2_socket_timeout_seconds,
        )
    cache = TwoTierCache(
        l1=MemoryCache(max_entries=cfg.l1_max_entries, max_ttl_seconds=cfg.l1_max_ttl_seconds),
        l2=l2,
        default_ttl_seconds=cfg.cache_default_ttl_seconds,
    )

    store = JobStore(
        config=JobStoreConfig(
            dsn=cfg.queue_dsn, statement_timeout_ms=cfg.queue_statement_timeout_ms
        )
    )
    queue = JobQueue(
        store=store,
        retry_policy=RetryPolicy(
            base_delay_seconds=cfg.retry_base_delay_seconds,
            max_delay_seconds=cfg.retry_max_delay_seconds,
        ),
        default_priority=cfg.job_default_priority,
        default_max_attempts=cfg.job_max_attempts,
        poll_interval_seconds=cfg.await_poll_interval_ms / 1000.0,
    )

    if invoker is None:
        invoker = HttpProviderInvoker(
            base_url=cfg.provider_base_url,
            api_key=cfg.provider_api_key,
            models=cfg.provider_models,
            timeout_seconds=cfg.provider_timeout_seconds,
        )

    session_factory = init_db(create_result_engine(cfg.result_database_url))
    sink = SqlAlchemyResultSink(session_factory)
    handlers = AnalysisHandlers(invoker, notifier=notifier, ledger=sink)

    orchestrator = AnalysisOrchestrator(
        cache=cache,
        queue=queue,
        subtask_timeout_seconds=cfg.subtask_timeout_seconds,
        tag_timeout_seconds=cfg.tag_timeout_seconds,
        late_result_wait_seconds=cfg.late_result_wait_seconds,
        analysis_ttl_seconds=cfg.analysis_cache_ttl_seconds,
        fallback_caption_tag_limit=cfg.fallback_caption_tag_limit,
    )
    pipeline = AnalysisPipeline(orchestrator=orchestrator, sink=sink, queue=queue)
    pool = WorkerPool(
        queue=queue,
        handlers=handlers.registry(),
        concurrency=cfg.worker_concurrency,
        poll_interval=cfg.worker_poll_interval_ms / 1000.0,
        job_timeout_seconds=cfg.worker_job_timeout_seconds,
        stall_timeout_seconds=cfg.worker_stall_timeout_seconds,
        cache=cache,
        cache_ttl_seconds=cfg.analysis_cache_ttl_seconds,
    )
    return MemolensRuntime(
        config=cfg,
        cache=cache,
        queue=queue,
        invoker=invoker,
        sink=sink,
        handlers=handlers,
        orchestrator=orchestrator,
        pipeline=pipeline,
        pool=pool,
    )


__all__ = ["MemolensRuntime", "build_runtime"]
