from __future__ import annotations

import base64

import pytest

from src.memolens.domain.models import (
    AggregatedAnalysis,
    AnalysisKind,
    AnalysisOptions,
    BoundingBox,
    DetectedObject,
    SceneLabel,
    Tag,
    TagCategory,
)
from src.memolens.domain.payloads import (
    decode_media_payload,
    encode_media_payload,
    notification_payload,
)
from src.memolens.domain.models import MediaBlob
from src.memolens.domain.queues import (
    KIND_ROUTES,
    QUEUE_CATALOG,
    JobType,
    QueueName,
    describe_catalog,
    queue_for_job_type,
    result_cache_key,
)
from src.memolens.domain.fingerprint import fingerprint_text
from src.memolens.exceptions import MalformedPayloadError


@pytest.mark.unit
def test_tag_from_dict_normalises_fields() -> None:
    tag = Tag.from_dict(
        {
            "name": "  Birthday Party ",
            "category": "EVENT",
            "confidence": 1.7,
            "relatedTags": ["cake"],
        }
    )

    assert tag.name == "birthday party"
    assert tag.category is TagCategory.EVENT
    assert tag.confidence == 1.0
    assert tag.related_tags == ("cake",)
    assert tag.synonyms is None


@pytest.mark.unit
def test_tag_from_dict_rejects_unknown_category() -> None:
    with pytest.raises(ValueError):
        Tag.from_dict({"name": "x", "category": "colour", "confidence": 0.5})


@pytest.mark.unit
def test_aggregated_analysis_distinguishes_missing_from_empty() -> None:
    analysis = AggregatedAnalysis(
        caption=None,
        objects=[],
        faces=None,
        extracted_text=[],
        scene=SceneLabel(label="beach", confidence=0.9),
        tags=[Tag(name="beach", category=TagCategory.LOCATION, confidence=0.7)],
        processing_time_ms=12,
    )

    data = analysis.to_dict()

    assert data["caption"] is None
    assert data["objects"] == []
    assert data["faces"] is None
    assert data["extracted_text"] == []
    assert data["scene"] == {"label": "beach", "confidence": 0.9}
    assert data["tags"] == [{"name": "beach", "category": "location", "confidence": 0.7}]


@pytest.mark.unit
def test_detected_object_round_trips_bounding_box() -> None:
    obj = DetectedObject(name="dog", confidence=0.9, bounding_box=BoundingBox(1, 2, 3, 4))

    assert DetectedObject.from_dict(obj.to_dict()) == obj


@pytest.mark.unit
def test_scene_unknown_label_is_not_known() -> None:
    assert not SceneLabel(label="Unknown", confidence=0.9).is_known
    assert SceneLabel(label="kitchen", confidence=0.4).is_known


@pytest.mark.unit
def test_options_toggle_by_kind() -> None:
    options = AnalysisOptions(faces=False)

    assert options.is_enabled(AnalysisKind.CAPTION)
    assert not options.is_enabled(AnalysisKind.FACES)


@pytest.mark.unit
def test_catalog_values_are_stable() -> None:
    assert [entry["queue"] for entry in describe_catalog()] == [
        "captioning",
        "object-detection",
        "face-detection",
        "text-extraction",
        "scene-classification",
        "tag-generation",
        "notification",
    ]
    assert QUEUE_CATALOG[QueueName.NOTIFICATION] == (JobType.SEND_NOTIFICATION,)


@pytest.mark.unit
def test_every_analysis_kind_is_routed_to_its_queue() -> None:
    for kind in AnalysisKind:
        queue, job_type = KIND_ROUTES[kind]
        assert job_type in QUEUE_CATALOG[queue]
        assert queue_for_job_type(job_type.value) is queue


@pytest.mark.unit
def test_queue_for_unknown_job_type_raises() -> None:
    with pytest.raises(LookupError):
        queue_for_job_type("resize-image")


@pytest.mark.unit
def test_result_cache_key_follows_job_type() -> None:
    digest = "a" * 64
    payload = {"media": "aGk=", "fingerprint": digest}

    assert result_cache_key("detect-objects", payload, []) == f"objects:{digest}"
    assert result_cache_key("classify-scene", payload, {}) == f"scene:{digest}"
    assert result_cache_key("generate-tags", {"prompt": "p"}, [{"name": "x"}]) == (
        "tags:" + fingerprint_text("p")
    )
    assert result_cache_key("generate-tags", {"prompt": "p"}, []) is None
    assert result_cache_key("send-notification", {"notification_id": "n"}, {}) is None
    assert result_cache_key("detect-objects", {"media": "aGk="}, []) is None


@pytest.mark.unit
def test_media_payload_carries_base64_and_fingerprint() -> None:
    payload = encode_media_payload(MediaBlob(b"\x89PNG", "image/png"), fingerprint="f" * 64)

    assert payload == {
        "media": base64.b64encode(b"\x89PNG").decode("ascii"),
        "mimetype": "image/png",
        "fingerprint": "f" * 64,
    }
    assert decode_media_payload(payload) == b"\x89PNG"


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [{}, {"media": ""}, {"media": "***"}, {"media": 42}],
)
def test_decode_media_payload_rejects_malformed(payload: dict) -> None:
    with pytest.raises(MalformedPayloadError):
        decode_media_payload(payload)


@pytest.mark.unit
def test_notification_payload_shape() -> None:
    payload = notification_payload(
        notification_id="n-1",
        user_id="u-1",
        kind="analysis-complete",
        title="Done",
        message="3 tags",
    )

    assert payload == {
        "notification_id": "n-1",
        "user_id": "u-1",
        "kind": "analysis-complete",
        "title": "Done",
        "message": "3 tags",
        "data": None,
    }
