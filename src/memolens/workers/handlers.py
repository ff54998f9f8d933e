"""Job handlers for every queue in the catalogue.

Analysis handlers are pure functions of their payload: they call one
provider and return a JSON-serialisable result, so running them twice is
harmless. The notification handler keeps a delivery ledger instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Protocol, TypeVar

from ..domain.models import BoundingBox, DetectedObject, FaceDetection, SceneLabel
from ..domain.payloads import decode_media_payload
from ..domain.queues import JobType
from ..exceptions import MalformedPayloadError, ProviderResponseError
from ..providers.base import ProviderInvoker, ProviderName
from ..services.tagging import generated_text, parse_tag_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class Notifier(Protocol):
    async def notify(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None: ...


class NotificationLedger(Protocol):
    def notification_recorded(self, notification_id: str) -> bool: ...

    def record_notification(self, notification_id: str) -> bool: ...


class LoggingNotifier:
    """Notifier that only logs; delivery channels live outside this service."""

    async def notify(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        logger.info("Sending %s notification to user %s: %s", kind, user_id, title)


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayloadError(f"payload is missing '{key}'")
    return value


# Response parsing ---------------------------------------------------------


def _box_from_corners(box: Any) -> BoundingBox:
    if not isinstance(box, Mapping):
        raise ProviderResponseError("detection without a bounding box")
    try:
        xmin, ymin = float(box["xmin"]), float(box["ymin"])
        xmax, ymax = float(box["xmax"]), float(box["ymax"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderResponseError("bounding box is incomplete") from exc
    return BoundingBox(x=xmin, y=ymin, width=xmax - xmin, height=ymax - ymin)


def parse_caption(data: Any) -> str:
    caption = generated_text(data).strip()
    if not caption:
        raise ProviderResponseError("captioning returned an empty caption")
    return caption


def parse_objects(data: Any, *, threshold: float = 0.5) -> list[DetectedObject]:
    if not isinstance(data, list):
        raise ProviderResponseError("object detection response is not a list")
    best: dict[str, DetectedObject] = {}
    for item in data:
        if not isinstance(item, Mapping) or "label" not in item:
            continue
        score = float(item.get("score", 0.0))
        if score <= threshold:
            continue
        label = str(item["label"])
        current = best.get(label)
        if current is not None and current.confidence >= score:
            continue
        box = _box_from_corners(item["box"]) if item.get("box") else None
        best[label] = DetectedObject(name=label, confidence=score, bounding_box=box)
    return list(best.values())


def parse_faces(data: Any) -> list[FaceDetection]:
    if not isinstance(data, list):
        raise ProviderResponseError("face detection response is not a list")
    faces: list[FaceDetection] = []
    for item in data:
        if not isinstance(item, Mapping):
            continue
        faces.append(
            FaceDetection(
                bounding_box=_box_from_corners(item.get("box")),
                confidence=float(item.get("score", item.get("confidence", 0.0))),
                landmarks=item.get("landmarks") or None,
            )
        )
    return faces


def parse_text_lines(data: Any) -> list[str]:
    return [line.strip() for line in generated_text(data).splitlines() if line.strip()]


def parse_scene(data: Any) -> SceneLabel:
    if not isinstance(data, list) or not data:
        raise ProviderResponseError("scene classification returned no labels")
    candidates = [item for item in data if isinstance(item, Mapping) and item.get("label")]
    if not candidates:
        raise ProviderResponseError("scene classification returned no labels")
    top = max(candidates, key=lambda item: float(item.get("score", 0.0)))
    return SceneLabel(label=str(top["label"]), confidence=float(top.get("score", 0.0)))


# Handlers -----------------------------------------------------------------


class AnalysisHandlers:
    """Binds the handler functions to a provider invoker and collaborators."""

    def __init__(
        self,
        invoker: ProviderInvoker,
        *,
        notifier: Notifier | None = None,
        ledger: NotificationLedger | None = None,
        object_score_threshold: float = 0.5,
    ) -> None:
        self._invoker = invoker
        self._notifier = notifier or LoggingNotifier()
        self._ledger = ledger
        self._threshold = object_score_threshold

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    async def generate_caption(self, payload: Mapping[str, Any]) -> str:
        data = decode_media_payload(payload)
        return parse_caption(await self._invoker.invoke(ProviderName.CAPTIONING.value, data))

    async def detect_objects(self, payload: Mapping[str, Any]) -> list[dict[str, Any]]:
        data = decode_media_payload(payload)
        response = await self._invoker.invoke(ProviderName.OBJECT_DETECTION.value, data)
        return [obj.to_dict() for obj in parse_objects(response, threshold=self._threshold)]

    async def detect_faces(self, payload: Mapping[str, Any]) -> list[dict[str, Any]]:
        data = decode_media_payload(payload)
        response = await self._invoker.invoke(ProviderName.FACE_DETECTION.value, data)
        return [face.to_dict() for face in parse_faces(response)]

    async def extract_text(self, payload: Mapping[str, Any]) -> list[str]:
        data = decode_media_payload(payload)
        response = await self._invoker.invoke(ProviderName.TEXT_EXTRACTION.value, data)
        return parse_text_lines(response)

    async def classify_scene(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        data = decode_media_payload(payload)
        response = await self._invoker.invoke(ProviderName.SCENE_CLASSIFICATION.value, data)
        return parse_scene(response).to_dict()

    async def generate_tags(self, payload: Mapping[str, Any]) -> list[dict[str, Any]]:
        prompt = _require_str(payload, "prompt")
        response = await self._invoker.invoke(
            ProviderName.TAG_GENERATION.value, {"inputs": prompt}
        )
        return [tag.to_dict() for tag in parse_tag_response(response)]

    async def send_notification(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        notification_id = _require_str(payload, "notification_id")
        user_id = _require_str(payload, "user_id")
        kind = _require_str(payload, "kind")
        title = str(payload.get("title") or "")
        message = str(payload.get("message") or "")
        data = payload.get("data")
        if data is not None and not isinstance(data, Mapping):
            raise MalformedPayloadError("notification 'data' must be an object")

        if self._ledger is not None and await self._run_sync(
            self._ledger.notification_recorded, notification_id
        ):
            logger.info("Notification %s already delivered; skipping", notification_id)
            return {"notification_id": notification_id, "delivered": False}

        await self._notifier.notify(user_id, kind, title, message, data)
        if self._ledger is not None:
            await self._run_sync(self._ledger.record_notification, notification_id)
        return {"notification_id": notification_id, "delivered": True}

    def registry(self) -> dict[str, Handler]:
        """Return the job type to handler mapping consumed by workers."""

        return {
            JobType.GENERATE_CAPTION.value: self.generate_caption,
            JobType.DETECT_OBJECTS.value: self.detect_objects,
            JobType.DETECT_FACES.value: self.detect_faces,
            JobType.EXTRACT_TEXT.value: self.extract_text,
            JobType.CLASSIFY_SCENE.value: self.classify_scene,
            JobType.GENERATE_TAGS.value: self.generate_tags,
            JobType.SEND_NOTIFICATION.value: self.send_notification,
        }


__all__ = [
    "AnalysisHandlers",
    "Handler",
    "LoggingNotifier",
    "NotificationLedger",
    "Notifier",
    "parse_caption",
    "parse_faces",
    "parse_objects",
    "parse_scene",
    "parse_text_lines",
]
