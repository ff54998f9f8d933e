"""Record-level pipeline: analyse, persist, optionally notify."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from ..domain.models import AggregatedAnalysis, AnalysisOptions, MediaBlob
from ..domain.payloads import notification_payload
from ..domain.queues import JobType, QueueName
from .job_queue import JobQueue
from .orchestrator import AnalysisOrchestrator

logger = structlog.get_logger(__name__)


class ResultSink(Protocol):
    def persist_analysis(self, record_id: str, analysis: AggregatedAnalysis) -> None: ...


class AnalysisPipeline:
    def __init__(
        self,
        *,
        orchestrator: AnalysisOrchestrator,
        sink: ResultSink,
        queue: JobQueue | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._sink = sink
        self._queue = queue

    async def process_record(
        self,
        record_id: str,
        blob: MediaBlob,
        options: AnalysisOptions | None = None,
        *,
        notify_user_id: str | None = None,
    ) -> AggregatedAnalysis:
        """Analyse ``blob`` and store the outcome under ``record_id``."""

        analysis = await self._orchestrator.analyze_media(blob, options)
        await asyncio.to_thread(self._sink.persist_analysis, record_id, analysis)
        logger.info("pipeline.record.persisted", record_id=record_id, tags=len(analysis.tags))

        if notify_user_id and self._queue is not None:
            await self._queue.enqueue(
                QueueName.NOTIFICATION,
                JobType.SEND_NOTIFICATION,
                notification_payload(
                    notification_id=f"analysis-complete:{record_id}",
                    user_id=notify_user_id,
                    kind="analysis-complete",
                    title="Your memory has been analysed",
                    message=f"{len(analysis.tags)} tags were generated",
                    data={"record_id": record_id},
                ),
                dedup_key=record_id,
            )
        return analysis


__all__ = ["AnalysisPipeline", "ResultSink"]
