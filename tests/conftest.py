from __future__ import annotations

import os
from typing import Iterator

import pytest

from src.memolens.cache import MemoryCache, TwoTierCache
from src.memolens.domain.retry import RetryPolicy
from src.memolens.infrastructure.queue import JobStore, JobStoreConfig
from src.memolens.services.job_queue import JobQueue
from tests.helpers.clock import Clock
from tests.mocks.cache_backends import InMemorySharedCache

os.environ.setdefault("MEMOLENS_LOG_JSON", "false")


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def job_store() -> Iterator[JobStore]:
    store = JobStore(config=JobStoreConfig(dsn=":memory:"))
    yield store
    store.close()


@pytest.fixture
def job_queue(job_store: JobStore) -> JobQueue:
    return JobQueue(
        store=job_store,
        retry_policy=RetryPolicy(base_delay_seconds=0.0, max_delay_seconds=0.0),
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def shared_cache() -> InMemorySharedCache:
    return InMemorySharedCache()


@pytest.fixture
def two_tier_cache(shared_cache: InMemorySharedCache) -> TwoTierCache:
    return TwoTierCache(l1=MemoryCache(max_entries=64), l2=shared_cache, default_ttl_seconds=600)
