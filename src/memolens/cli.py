"""``memolens-worker`` entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import signal
import sys
from pathlib import Path

from .core.config import AppConfig
from .domain.models import MediaBlob
from .domain.queues import QueueName
from .lifecycle import MemolensRuntime, build_runtime
from .logging import configure_logging
from .workers import WorkerPool


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run memolens analysis workers.")
    parser.add_argument(
        "--queue",
        action="append",
        choices=[queue.value for queue in QueueName],
        help="Queue to serve; repeat for several. Defaults to every queue.",
    )
    parser.add_argument("--concurrency", type=int, help="Workers per queue.")
    parser.add_argument(
        "--no-drain",
        action="store_true",
        help="Cancel in-flight jobs on shutdown instead of waiting for them.",
    )
    parser.add_argument(
        "--analyze",
        metavar="PATH",
        help="Analyse one media file with in-process workers and print the result.",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop.set))


def _configure_pool(runtime: MemolensRuntime, args: argparse.Namespace) -> None:
    cfg = runtime.config
    if args.queue or args.concurrency:
        runtime.pool = WorkerPool(
            queue=runtime.queue,
            handlers=runtime.handlers.registry(),
            queues=args.queue,
            concurrency=args.concurrency or cfg.worker_concurrency,
            poll_interval=cfg.worker_poll_interval_ms / 1000.0,
            job_timeout_seconds=cfg.worker_job_timeout_seconds,
            stall_timeout_seconds=cfg.worker_stall_timeout_seconds,
            cache=runtime.cache,
            cache_ttl_seconds=cfg.analysis_cache_ttl_seconds,
        )


async def run_workers(runtime: MemolensRuntime, *, drain: bool) -> None:
    stop = asyncio.Event()
    _install_signal_handlers(stop)
    await runtime.start()
    try:
        await stop.wait()
    finally:
        await runtime.shutdown(drain=drain)


async def analyze_file(runtime: MemolensRuntime, path: Path) -> dict:
    mimetype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    blob = MediaBlob(data=path.read_bytes(), mimetype=mimetype)
    await runtime.start()
    try:
        analysis = await runtime.orchestrator.analyze_media(blob)
    finally:
        await runtime.shutdown(drain=False)
    return analysis.to_dict()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = AppConfig.build_default()
    configure_logging(config.log_level, json=config.log_json)
    try:
        runtime = build_runtime(config)
    except Exception as exc:
        print(f"memolens-worker failed to start: {exc}", file=sys.stderr)
        return 2
    _configure_pool(runtime, args)

    if args.analyze:
        result = asyncio.run(analyze_file(runtime, Path(args.analyze)))
        print(json.dumps(result, indent=2))
        return 0

    asyncio.run(run_workers(runtime, drain=not args.no_drain))
    return 0


if __name__ == "__main__":
    sys.exit(main())
