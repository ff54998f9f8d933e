"""Domain models for the media-analysis pipeline.

Jobs, cache entries and analysis results travel between processes as JSON,
so every value type here offers ``to_dict``/``from_dict`` helpers that keep
the wire shape in one place. Optional fields of :class:`AggregatedAnalysis`
are ``None`` when the corresponding subtask failed, timed out or was
disabled; an empty list means the subtask succeeded and found nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class AnalysisKind(str, Enum):
    """Independently toggle-able analysis subtasks."""

    CAPTION = "caption"
    OBJECTS = "objects"
    FACES = "faces"
    TEXT = "text"
    SCENE = "scene"
    TAGS = "tags"


FAN_OUT_KINDS: tuple[AnalysisKind, ...] = (
    AnalysisKind.CAPTION,
    AnalysisKind.OBJECTS,
    AnalysisKind.FACES,
    AnalysisKind.TEXT,
    AnalysisKind.SCENE,
)


class JobState(str, Enum):
    """Queue job states; ``completed`` and ``failed`` are terminal."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class TaskStatus(str, Enum):
    """Outcome of one fan-out branch."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class TagCategory(str, Enum):
    OBJECT = "object"
    PERSON = "person"
    EMOTION = "emotion"
    ACTIVITY = "activity"
    LOCATION = "location"
    EVENT = "event"


@dataclass(frozen=True, slots=True)
class MediaBlob:
    """Immutable uploaded media; identity is the fingerprint of ``data``."""

    data: bytes
    mimetype: str = "application/octet-stream"


@dataclass(slots=True)
class AnalysisOptions:
    """Per-call toggles for :meth:`AnalysisOrchestrator.analyze_media`."""

    caption: bool = True
    objects: bool = True
    faces: bool = True
    text: bool = True
    scene: bool = True
    tags: bool = True
    subtask_timeout_seconds: float | None = None
    priority: int | None = None

    def is_enabled(self, kind: AnalysisKind) -> bool:
        return bool(getattr(self, kind.value))


@dataclass(slots=True)
class AnalysisJob:
    """Queue entry owned by the job store."""

    id: str
    queue_name: str
    job_type: str
    payload: dict[str, Any]
    priority: int
    attempts_made: int
    max_attempts: int
    state: JobState
    enqueued_at: datetime
    updated_at: datetime
    available_at: datetime
    dedup_key: str | None = None
    last_error: str | None = None
    result: Any = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Reference returned by ``enqueue`` and accepted by ``await_completion``."""

    job_id: str
    queue_name: str
    job_type: str


@dataclass(slots=True)
class AnalysisTaskResult:
    """Transient per-branch result; never persisted."""

    kind: AnalysisKind
    status: TaskStatus
    value: Any = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BoundingBox":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True, slots=True)
class DetectedObject:
    name: str
    confidence: float
    bounding_box: BoundingBox | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "confidence": self.confidence,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectedObject":
        box = data.get("bounding_box")
        return cls(
            name=str(data["name"]),
            confidence=float(data.get("confidence", 0.0)),
            bounding_box=BoundingBox.from_dict(box) if box else None,
        )


@dataclass(frozen=True, slots=True)
class FaceDetection:
    """Face bounding box; linking it to a person happens elsewhere."""

    bounding_box: BoundingBox
    confidence: float
    landmarks: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bounding_box": self.bounding_box.to_dict(),
            "confidence": self.confidence,
            "landmarks": dict(self.landmarks) if self.landmarks else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FaceDetection":
        return cls(
            bounding_box=BoundingBox.from_dict(data["bounding_box"]),
            confidence=float(data.get("confidence", 0.0)),
            landmarks=data.get("landmarks") or None,
        )


@dataclass(frozen=True, slots=True)
class SceneLabel:
    label: str
    confidence: float

    @property
    def is_known(self) -> bool:
        return bool(self.label) and self.label.strip().lower() != "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SceneLabel":
        return cls(label=str(data["label"]), confidence=float(data.get("confidence", 0.0)))


@dataclass(frozen=True, slots=True)
class Tag:
    name: str
    category: TagCategory
    confidence: float
    synonyms: tuple[str, ...] | None = None
    related_tags: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "category": self.category.value,
            "confidence": self.confidence,
        }
        if self.synonyms is not None:
            data["synonyms"] = list(self.synonyms)
        if self.related_tags is not None:
            data["related_tags"] = list(self.related_tags)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Tag":
        synonyms = data.get("synonyms")
        related = data.get("related_tags", data.get("relatedTags"))
        confidence = min(max(float(data.get("confidence", 0.0)), 0.0), 1.0)
        return cls(
            name=str(data["name"]).strip().lower(),
            category=TagCategory(str(data["category"]).strip().lower()),
            confidence=confidence,
            synonyms=tuple(str(item) for item in synonyms) if synonyms else None,
            related_tags=tuple(str(item) for item in related) if related else None,
        )


@dataclass(slots=True)
class AggregatedAnalysis:
    """Combined result of one ``analyze_media`` call."""

    caption: str | None = None
    objects: list[DetectedObject] | None = None
    faces: list[FaceDetection] | None = None
    extracted_text: list[str] | None = None
    scene: SceneLabel | None = None
    tags: list[Tag] = field(default_factory=list)
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "caption": self.caption,
            "objects": [obj.to_dict() for obj in self.objects]
            if self.objects is not None
            else None,
            "faces": [face.to_dict() for face in self.faces] if self.faces is not None else None,
            "extracted_text": list(self.extracted_text)
            if self.extracted_text is not None
            else None,
            "scene": self.scene.to_dict() if self.scene else None,
            "tags": [tag.to_dict() for tag in self.tags],
            "processing_time_ms": self.processing_time_ms,
        }


__all__ = [
    "AggregatedAnalysis",
    "AnalysisJob",
    "AnalysisKind",
    "AnalysisOptions",
    "AnalysisTaskResult",
    "BoundingBox",
    "DetectedObject",
    "FAN_OUT_KINDS",
    "FaceDetection",
    "JobHandle",
    "JobState",
    "MediaBlob",
    "SceneLabel",
    "Tag",
    "TagCategory",
    "TaskStatus",
]
