"""Domain models, queue catalogue and pure helpers of the analysis pipeline."""

from .fingerprint import cache_key, fingerprint, fingerprint_text
from .models import (
    FAN_OUT_KINDS,
    AggregatedAnalysis,
    AnalysisJob,
    AnalysisKind,
    AnalysisOptions,
    AnalysisTaskResult,
    BoundingBox,
    DetectedObject,
    FaceDetection,
    JobHandle,
    JobState,
    MediaBlob,
    SceneLabel,
    Tag,
    TagCategory,
    TaskStatus,
)
from .payloads import decode_media_payload, encode_media_payload, notification_payload
from .queues import (
    KIND_ROUTES,
    QUEUE_CATALOG,
    JobType,
    QueueName,
    describe_catalog,
    queue_for_job_type,
)
from .retry import RetryPolicy

__all__ = [
    "FAN_OUT_KINDS",
    "KIND_ROUTES",
    "QUEUE_CATALOG",
    "AggregatedAnalysis",
    "AnalysisJob",
    "AnalysisKind",
    "AnalysisOptions",
    "AnalysisTaskResult",
    "BoundingBox",
    "DetectedObject",
    "FaceDetection",
    "JobHandle",
    "JobState",
    "JobType",
    "MediaBlob",
    "QueueName",
    "RetryPolicy",
    "SceneLabel",
    "Tag",
    "TagCategory",
    "TaskStatus",
    "cache_key",
    "decode_media_payload",
    "describe_catalog",
    "encode_media_payload",
    "fingerprint",
    "fingerprint_text",
    "notification_payload",
    "queue_for_job_type",
]
