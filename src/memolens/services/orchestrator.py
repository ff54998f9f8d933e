"""Fan-out/fan-in orchestration of the per-kind analysis subtasks."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import structlog

from ..cache import TwoTierCache
from ..domain.fingerprint import cache_key, fingerprint, fingerprint_text
from ..domain.models import (
    FAN_OUT_KINDS,
    AggregatedAnalysis,
    AnalysisKind,
    AnalysisOptions,
    AnalysisTaskResult,
    DetectedObject,
    FaceDetection,
    MediaBlob,
    SceneLabel,
    Tag,
    TaskStatus,
)
from ..domain.payloads import encode_media_payload
from ..domain.queues import KIND_ROUTES
from ..exceptions import ProviderResponseError, QueueUnavailableError, SubtaskTimeoutError
from .job_queue import JobQueue
from .tagging import build_tag_prompt, extract_fallback_tags

logger = structlog.get_logger(__name__)

ANALYSIS_TTL_SECONDS = 86_400


def _decode_objects(value: Any) -> list[DetectedObject]:
    return [DetectedObject.from_dict(item) for item in value]


def _decode_faces(value: Any) -> list[FaceDetection]:
    return [FaceDetection.from_dict(item) for item in value]


def _decode_text(value: Any) -> list[str]:
    if not isinstance(value, list):
        raise TypeError("extracted text must be a list of lines")
    return [str(line) for line in value]


def _decode_caption(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise TypeError("caption must be a non-empty string")
    return value


_DECODERS: dict[AnalysisKind, Callable[[Any], Any]] = {
    AnalysisKind.CAPTION: _decode_caption,
    AnalysisKind.OBJECTS: _decode_objects,
    AnalysisKind.FACES: _decode_faces,
    AnalysisKind.TEXT: _decode_text,
    AnalysisKind.SCENE: SceneLabel.from_dict,
}


class AnalysisOrchestrator:
    """Turns one media blob into an :class:`AggregatedAnalysis`.

    Each enabled subtask is looked up in the cache by content fingerprint
    and otherwise dispatched through the job queue. Subtasks run
    concurrently and a failed or late subtask only leaves its field empty;
    only an unreachable queue store aborts the call.
    """

    def __init__(
        self,
        *,
        cache: TwoTierCache,
        queue: JobQueue,
        subtask_timeout_seconds: float = 30.0,
        tag_timeout_seconds: float = 30.0,
        late_result_wait_seconds: float = 300.0,
        analysis_ttl_seconds: int = ANALYSIS_TTL_SECONDS,
        fallback_caption_tag_limit: int = 5,
        default_priority: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self._queue = queue
        self._subtask_timeout = subtask_timeout_seconds
        self._tag_timeout = tag_timeout_seconds
        self._late_result_wait = late_result_wait_seconds
        self._ttl = analysis_ttl_seconds
        self._caption_tag_limit = fallback_caption_tag_limit
        self._default_priority = default_priority
        self._clock = clock

    async def analyze_media(
        self,
        blob: MediaBlob,
        options: AnalysisOptions | None = None,
    ) -> AggregatedAnalysis:
        options = options or AnalysisOptions()
        started = self._clock()
        digest = await asyncio.to_thread(fingerprint, blob.data)
        timeout = options.subtask_timeout_seconds or self._subtask_timeout
        priority = options.priority if options.priority is not None else self._default_priority
        log = logger.bind(fingerprint=digest[:12])

        kinds = [kind for kind in FAN_OUT_KINDS if options.is_enabled(kind)]
        settled = await asyncio.gather(
            *(
                self._run_subtask(kind, blob, digest, timeout=timeout, priority=priority)
                for kind in kinds
            ),
            return_exceptions=True,
        )
        results: dict[AnalysisKind, AnalysisTaskResult] = {}
        for kind, outcome in zip(kinds, settled):
            if isinstance(outcome, BaseException):
                raise outcome
            results[kind] = outcome
            if not outcome.succeeded:
                log.warning(
                    "analysis.subtask.omitted",
                    kind=kind.value,
                    status=outcome.status.value,
                    error=outcome.error,
                )

        analysis = AggregatedAnalysis(
            caption=self._value(results, AnalysisKind.CAPTION),
            objects=self._value(results, AnalysisKind.OBJECTS),
            faces=self._value(results, AnalysisKind.FACES),
            extracted_text=self._value(results, AnalysisKind.TEXT),
            scene=self._value(results, AnalysisKind.SCENE),
        )
        if options.tags:
            analysis.tags = await self._synthesize_tags(analysis, priority=priority)

        analysis.processing_time_ms = max(1, int((self._clock() - started) * 1000))
        log.info(
            "analysis.completed",
            succeeded=[kind.value for kind, result in results.items() if result.succeeded],
            tags=len(analysis.tags),
            processing_time_ms=analysis.processing_time_ms,
        )
        return analysis

    # Subtasks -----------------------------------------------------------

    async def _run_subtask(
        self,
        kind: AnalysisKind,
        blob: MediaBlob,
        digest: str,
        *,
        timeout: float,
        priority: int | None,
    ) -> AnalysisTaskResult:
        key = cache_key(kind.value, digest)
        queue_name, job_type = KIND_ROUTES[kind]

        async def _dispatch() -> Any:
            handle = await self._queue.enqueue(
                queue_name,
                job_type,
                encode_media_payload(blob, fingerprint=digest),
                priority=priority,
                dedup_key=digest,
            )
            return await self._queue.await_completion(
                handle, timeout=max(timeout, self._late_result_wait)
            )

        # The shared dispatch outlives this call so a late result is still cached.
        try:
            raw = await self._cache.get_or_compute(
                key, _dispatch, ttl_seconds=self._ttl, timeout=timeout
            )
        except QueueUnavailableError:
            raise
        except (SubtaskTimeoutError, asyncio.TimeoutError) as exc:
            return AnalysisTaskResult(
                kind=kind,
                status=TaskStatus.TIMEOUT,
                error=str(exc) or f"no result within {timeout}s",
            )
        except Exception as exc:
            return AnalysisTaskResult(kind=kind, status=TaskStatus.FAILURE, error=str(exc))

        try:
            value = _DECODERS[kind](raw)
        except (KeyError, TypeError, ValueError) as exc:
            await self._cache.invalidate(key)
            return AnalysisTaskResult(
                kind=kind, status=TaskStatus.FAILURE, error=f"unusable result: {exc}"
            )
        return AnalysisTaskResult(kind=kind, status=TaskStatus.SUCCESS, value=value)

    @staticmethod
    def _value(results: dict[AnalysisKind, AnalysisTaskResult], kind: AnalysisKind) -> Any:
        result = results.get(kind)
        if result is None or not result.succeeded:
            return None
        return result.value

    # Tags ---------------------------------------------------------------

    async def _synthesize_tags(
        self,
        analysis: AggregatedAnalysis,
        *,
        priority: int | None,
    ) -> list[Tag]:
        prompt = build_tag_prompt(
            caption=analysis.caption,
            object_names=[obj.name for obj in analysis.objects or ()],
            scene=analysis.scene,
            extracted_text=analysis.extracted_text,
        )
        tags: list[Tag] = []
        if prompt is not None:
            key = cache_key(AnalysisKind.TAGS.value, fingerprint_text(prompt))
            try:
                raw = await self._cache.get_or_compute(
                    key,
                    lambda: self._generate_tags(prompt, priority=priority),
                    ttl_seconds=self._ttl,
                )
                tags = [Tag.from_dict(item) for item in raw]
            except QueueUnavailableError:
                raise
            except Exception as exc:
                logger.warning("analysis.tags.generation_failed", error=str(exc))
                tags = []

        if not tags:
            tags = extract_fallback_tags(
                caption=analysis.caption,
                objects=analysis.objects,
                scene=analysis.scene,
                extracted_text=analysis.extracted_text,
                caption_limit=self._caption_tag_limit,
            )
        return tags

    async def _generate_tags(self, prompt: str, *, priority: int | None) -> list[dict[str, Any]]:
        queue_name, job_type = KIND_ROUTES[AnalysisKind.TAGS]
        handle = await self._queue.enqueue(
            queue_name,
            job_type,
            {"prompt": prompt},
            priority=priority,
            dedup_key=fingerprint_text(prompt),
        )
        raw = await self._queue.await_completion(handle, timeout=self._tag_timeout)
        if not raw:
            raise ProviderResponseError("tag generation returned no tags")
        return list(raw)


__all__ = ["ANALYSIS_TTL_SECONDS", "AnalysisOrchestrator"]
