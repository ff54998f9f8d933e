from __future__ import annotations

import base64
from typing import Any, Mapping

import pytest

from src.memolens.domain.queues import JobType
from src.memolens.exceptions import MalformedPayloadError, ProviderResponseError
from src.memolens.workers import AnalysisHandlers
from src.memolens.workers.handlers import (
    parse_caption,
    parse_faces,
    parse_objects,
    parse_scene,
    parse_text_lines,
)
from tests.mocks.invokers import ScriptedInvoker

MEDIA = b"\x89PNG fake image"
PAYLOAD = {"media": base64.b64encode(MEDIA).decode("ascii"), "fingerprint": "f" * 64}


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, str, Mapping[str, Any] | None]] = []

    async def notify(self, user_id, kind, title, message, data=None) -> None:
        self.sent.append((user_id, kind, title, message, data))


class MemoryLedger:
    def __init__(self) -> None:
        self.ids: set[str] = set()

    def notification_recorded(self, notification_id: str) -> bool:
        return notification_id in self.ids

    def record_notification(self, notification_id: str) -> bool:
        if notification_id in self.ids:
            return False
        self.ids.add(notification_id)
        return True


def _notification(**overrides: Any) -> dict[str, Any]:
    payload = {
        "notification_id": "analysis-complete:rec-1",
        "user_id": "user-1",
        "kind": "analysis-complete",
        "title": "Done",
        "message": "3 tags",
        "data": {"record_id": "rec-1"},
    }
    payload.update(overrides)
    return payload


@pytest.mark.unit
def test_parse_objects_filters_by_score_and_keeps_best_per_label() -> None:
    objects = parse_objects(
        [
            {"label": "dog", "score": 0.7, "box": {"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}},
            {"label": "dog", "score": 0.95, "box": {"xmin": 10, "ymin": 20, "xmax": 40, "ymax": 60}},
            {"label": "cat", "score": 0.5},
            {"score": 0.99},
        ]
    )

    assert len(objects) == 1
    dog = objects[0]
    assert (dog.name, dog.confidence) == ("dog", 0.95)
    assert dog.bounding_box.to_dict() == {"x": 10.0, "y": 20.0, "width": 30.0, "height": 40.0}


@pytest.mark.unit
def test_parse_faces_converts_corners() -> None:
    faces = parse_faces([{"confidence": 0.8, "box": {"xmin": 5, "ymin": 5, "xmax": 25, "ymax": 35}}])

    assert faces[0].confidence == 0.8
    assert faces[0].bounding_box.to_dict() == {"x": 5.0, "y": 5.0, "width": 20.0, "height": 30.0}
    assert parse_faces([]) == []


@pytest.mark.unit
def test_parse_faces_requires_boxes() -> None:
    with pytest.raises(ProviderResponseError):
        parse_faces([{"score": 0.9}])


@pytest.mark.unit
def test_parse_caption_and_text_lines() -> None:
    assert parse_caption([{"generated_text": "  a red car  "}]) == "a red car"
    assert parse_text_lines({"generated_text": "STOP\n\n  ahead \n"}) == ["STOP", "ahead"]
    assert parse_text_lines([{"generated_text": ""}]) == []
    with pytest.raises(ProviderResponseError):
        parse_caption([{"generated_text": "   "}])


@pytest.mark.unit
def test_parse_scene_picks_top_label() -> None:
    scene = parse_scene([{"label": "office", "score": 0.2}, {"label": "kitchen", "score": 0.6}])

    assert (scene.label, scene.confidence) == ("kitchen", 0.6)
    with pytest.raises(ProviderResponseError):
        parse_scene([])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_analysis_handlers_send_decoded_media_to_providers() -> None:
    invoker = ScriptedInvoker()
    registry = AnalysisHandlers(invoker).registry()

    caption = await registry[JobType.GENERATE_CAPTION.value](PAYLOAD)
    objects = await registry[JobType.DETECT_OBJECTS.value](PAYLOAD)
    faces = await registry[JobType.DETECT_FACES.value](PAYLOAD)
    text = await registry[JobType.EXTRACT_TEXT.value](PAYLOAD)
    scene = await registry[JobType.CLASSIFY_SCENE.value](PAYLOAD)

    assert caption == "a brown dog playing fetch in the park"
    assert [obj["name"] for obj in objects] == ["dog", "ball"]
    assert faces[0]["bounding_box"] == {"x": 40.0, "y": 30.0, "width": 40.0, "height": 60.0}
    assert text == ["PARK RULES", "keep dogs on leash"]
    assert scene == {"label": "park", "confidence": 0.74}
    assert all(payload == MEDIA for _, payload in invoker.calls)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_generate_tags_sends_prompt_and_returns_tag_dicts() -> None:
    invoker = ScriptedInvoker()
    handlers = AnalysisHandlers(invoker)

    tags = await handlers.generate_tags({"prompt": "Caption: a dog"})

    assert invoker.calls == [("tag-generation", {"inputs": "Caption: a dog"})]
    assert [tag["name"] for tag in tags] == ["dog", "park", "playing"]
    assert tags[0] == {"name": "dog", "category": "object", "confidence": 0.92}


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "handler_name,payload",
    [
        ("generate_caption", {"fingerprint": "f" * 64}),
        ("detect_objects", {"media": "%%%"}),
        ("generate_tags", {"prompt": "  "}),
        ("send_notification", {"user_id": "u"}),
        ("send_notification", {**_notification(), "data": ["not", "a", "mapping"]}),
    ],
)
async def test_malformed_payloads_are_rejected(handler_name: str, payload: dict) -> None:
    invoker = ScriptedInvoker()
    handler = getattr(AnalysisHandlers(invoker), handler_name)

    with pytest.raises(MalformedPayloadError):
        await handler(payload)
    assert invoker.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notification_is_delivered_once_per_id() -> None:
    notifier = RecordingNotifier()
    ledger = MemoryLedger()
    handlers = AnalysisHandlers(ScriptedInvoker(), notifier=notifier, ledger=ledger)

    first = await handlers.send_notification(_notification())
    second = await handlers.send_notification(_notification())

    assert first == {"notification_id": "analysis-complete:rec-1", "delivered": True}
    assert second == {"notification_id": "analysis-complete:rec-1", "delivered": False}
    assert notifier.sent == [("user-1", "analysis-complete", "Done", "3 tags", {"record_id": "rec-1"})]
    assert ledger.ids == {"analysis-complete:rec-1"}
