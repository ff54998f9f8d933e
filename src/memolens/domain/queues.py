"""Stable catalogue of queue names and job types.

Operational tooling (queue depth, failed-job inspection) relies on these
values, so members are only ever added, never renamed.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .fingerprint import cache_key, fingerprint_text
from .models import AnalysisKind


class QueueName(str, Enum):
    CAPTIONING = "captioning"
    OBJECT_DETECTION = "object-detection"
    FACE_DETECTION = "face-detection"
    TEXT_EXTRACTION = "text-extraction"
    SCENE_CLASSIFICATION = "scene-classification"
    TAG_GENERATION = "tag-generation"
    NOTIFICATION = "notification"


class JobType(str, Enum):
    GENERATE_CAPTION = "generate-caption"
    DETECT_OBJECTS = "detect-objects"
    DETECT_FACES = "detect-faces"
    EXTRACT_TEXT = "extract-text"
    CLASSIFY_SCENE = "classify-scene"
    GENERATE_TAGS = "generate-tags"
    SEND_NOTIFICATION = "send-notification"


QUEUE_CATALOG: Mapping[QueueName, tuple[JobType, ...]] = MappingProxyType(
    {
        QueueName.CAPTIONING: (JobType.GENERATE_CAPTION,),
        QueueName.OBJECT_DETECTION: (JobType.DETECT_OBJECTS,),
        QueueName.FACE_DETECTION: (JobType.DETECT_FACES,),
        QueueName.TEXT_EXTRACTION: (JobType.EXTRACT_TEXT,),
        QueueName.SCENE_CLASSIFICATION: (JobType.CLASSIFY_SCENE,),
        QueueName.TAG_GENERATION: (JobType.GENERATE_TAGS,),
        QueueName.NOTIFICATION: (JobType.SEND_NOTIFICATION,),
    }
)

KIND_ROUTES: Mapping[AnalysisKind, tuple[QueueName, JobType]] = MappingProxyType(
    {
        AnalysisKind.CAPTION: (QueueName.CAPTIONING, JobType.GENERATE_CAPTION),
        AnalysisKind.OBJECTS: (QueueName.OBJECT_DETECTION, JobType.DETECT_OBJECTS),
        AnalysisKind.FACES: (QueueName.FACE_DETECTION, JobType.DETECT_FACES),
        AnalysisKind.TEXT: (QueueName.TEXT_EXTRACTION, JobType.EXTRACT_TEXT),
        AnalysisKind.SCENE: (QueueName.SCENE_CLASSIFICATION, JobType.CLASSIFY_SCENE),
        AnalysisKind.TAGS: (QueueName.TAG_GENERATION, JobType.GENERATE_TAGS),
    }
)


def queue_for_job_type(job_type: str) -> QueueName:
    """Return the queue that owns ``job_type``."""

    for queue, job_types in QUEUE_CATALOG.items():
        if any(job_type == member.value for member in job_types):
            return queue
    raise LookupError(f"Job type {job_type!r} is not registered")


def result_cache_key(job_type: str, payload: Mapping[str, Any], result: Any) -> str | None:
    """Cache key under which a completed job's result is stored, if any.

    Media analysis results are keyed by content fingerprint and generated
    tags by the prompt fingerprint. Notifications and empty tag lists are
    never cached.
    """

    if job_type == JobType.GENERATE_TAGS.value:
        prompt = payload.get("prompt")
        if not isinstance(prompt, str) or not result:
            return None
        return cache_key(AnalysisKind.TAGS.value, fingerprint_text(prompt))
    digest = payload.get("fingerprint")
    if not isinstance(digest, str) or not digest:
        return None
    for kind, (_, routed_type) in KIND_ROUTES.items():
        if routed_type.value == job_type:
            return cache_key(kind.value, digest)
    return None


def describe_catalog() -> list[dict[str, object]]:
    """Serialisable view of :data:`QUEUE_CATALOG` for operational tooling."""

    return [
        {"queue": queue.value, "job_types": [job_type.value for job_type in job_types]}
        for queue, job_types in QUEUE_CATALOG.items()
    ]


__all__ = [
    "KIND_ROUTES",
    "QUEUE_CATALOG",
    "JobType",
    "QueueName",
    "describe_catalog",
    "queue_for_job_type",
    "result_cache_key",
]
