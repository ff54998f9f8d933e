"""FastAPI application exposing the operational router."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .api import ops_router
from .core.config import AppConfig
from .lifecycle import MemolensRuntime, build_runtime
from .logging import configure_logging


def create_app(
    config: AppConfig | None = None,
    *,
    runtime: MemolensRuntime | None = None,
    start_workers: bool = True,
) -> FastAPI:
    """Build the FastAPI instance around a (possibly injected) runtime."""

    cfg = config or (runtime.config if runtime is not None else AppConfig.build_default())
    configure_logging(cfg.log_level, json=cfg.log_json)
    rt = runtime or build_runtime(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await rt.start(workers=start_workers)
        try:
            yield
        finally:
            await rt.shutdown()

    app = FastAPI(title="memolens", lifespan=lifespan)
    app.state.runtime = rt
    app.state.config = cfg
    app.include_router(ops_router)
    return app


__all__ = ["create_app"]
