from __future__ import annotations

import json

import pytest

from src.memolens.domain.models import DetectedObject, SceneLabel, TagCategory
from src.memolens.exceptions import ProviderResponseError
from src.memolens.services.tagging import (
    CAPTION_TAG_CONFIDENCE,
    LOCATION_TAG_CONFIDENCE,
    OBJECT_TAG_CONFIDENCE,
    build_tag_prompt,
    extract_fallback_tags,
    parse_tag_response,
)


def _response(text: str) -> list[dict[str, str]]:
    return [{"generated_text": text}]


@pytest.mark.unit
def test_prompt_lists_available_signals_in_order() -> None:
    prompt = build_tag_prompt(
        caption="a dog on a beach ",
        object_names=["dog", "ball"],
        scene=SceneLabel("beach", 0.9),
        extracted_text=["SURF", "SHOP"],
    )

    lines = prompt.splitlines()
    assert lines[0] == "Analyze this image description and generate relevant tags:"
    assert lines[1:5] == [
        "Caption: a dog on a beach",
        "Objects detected: dog, ball",
        "Scene: beach",
        "Text found: SURF SHOP",
    ]


@pytest.mark.unit
def test_prompt_is_deterministic_and_skips_unknown_scene() -> None:
    kwargs = {"caption": "a cat", "scene": SceneLabel("unknown", 0.2)}

    assert build_tag_prompt(**kwargs) == build_tag_prompt(**kwargs)
    assert "Scene:" not in build_tag_prompt(**kwargs)


@pytest.mark.unit
def test_prompt_is_none_without_signals() -> None:
    assert build_tag_prompt(object_names=[], extracted_text=[]) is None


@pytest.mark.unit
def test_parse_fenced_json_response() -> None:
    items = [
        {"name": "Dog", "category": "object", "confidence": 0.9},
        {"name": "dog", "category": "object", "confidence": 0.4},
        {"name": "", "category": "object", "confidence": 0.4},
        {"name": "sky", "category": "colour", "confidence": 0.4},
        {"name": "beach", "category": "location", "confidence": 0.8, "synonyms": ["shore"]},
    ]
    text = f"Sure! Here you go:\n```json\n{json.dumps(items)}\n```\nEnjoy."

    tags = parse_tag_response(_response(text))

    assert [(tag.name, tag.category) for tag in tags] == [
        ("dog", TagCategory.OBJECT),
        ("beach", TagCategory.LOCATION),
    ]
    assert tags[0].confidence == 0.9
    assert tags[1].synonyms == ("shore",)


@pytest.mark.unit
def test_parse_bare_json_array_inside_text() -> None:
    tags = parse_tag_response(
        {"generated_text": 'Tags: [{"name": "party", "category": "event", "confidence": 0.6}]'}
    )

    assert [tag.name for tag in tags] == ["party"]


@pytest.mark.unit
@pytest.mark.parametrize(
    "data",
    [
        _response("no tags today"),
        _response("[not json]"),
        [],
        {"unexpected": True},
    ],
)
def test_unusable_tag_response_raises(data) -> None:
    with pytest.raises(ProviderResponseError):
        parse_tag_response(data)


@pytest.mark.unit
def test_fallback_uses_objects_scene_and_caption_words() -> None:
    tags = extract_fallback_tags(
        caption="Children playing with a kite near the water, laughing",
        objects=[DetectedObject("kite", 0.9), DetectedObject("person", 0.8)],
        scene=SceneLabel("Beach", 0.7),
        caption_limit=3,
    )

    assert [(tag.name, tag.category, tag.confidence) for tag in tags] == [
        ("kite", TagCategory.OBJECT, OBJECT_TAG_CONFIDENCE),
        ("person", TagCategory.OBJECT, OBJECT_TAG_CONFIDENCE),
        ("beach", TagCategory.LOCATION, LOCATION_TAG_CONFIDENCE),
        ("children", TagCategory.ACTIVITY, CAPTION_TAG_CONFIDENCE),
        ("playing", TagCategory.ACTIVITY, CAPTION_TAG_CONFIDENCE),
        ("near", TagCategory.ACTIVITY, CAPTION_TAG_CONFIDENCE),
    ]


@pytest.mark.unit
def test_fallback_emits_exactly_one_location_tag_for_known_scene() -> None:
    tags = extract_fallback_tags(scene=SceneLabel("kitchen", 0.5))

    assert [tag.category for tag in tags] == [TagCategory.LOCATION]


@pytest.mark.unit
def test_scene_sharing_an_object_name_still_gets_location_tag() -> None:
    tags = extract_fallback_tags(
        caption="waves on the beach",
        objects=[DetectedObject("beach", 0.9)],
        scene=SceneLabel("beach", 0.8),
    )

    assert [(tag.name, tag.category) for tag in tags] == [
        ("beach", TagCategory.OBJECT),
        ("beach", TagCategory.LOCATION),
        ("waves", TagCategory.ACTIVITY),
    ]
    assert [tag for tag in tags if tag.category is TagCategory.LOCATION][0].confidence == (
        LOCATION_TAG_CONFIDENCE
    )


@pytest.mark.unit
def test_fallback_ignores_unknown_scene_and_stopwords() -> None:
    tags = extract_fallback_tags(
        caption="this is that, with them",
        scene=SceneLabel("unknown", 0.9),
    )

    assert [tag.name for tag in tags] == ["them"]


@pytest.mark.unit
def test_fallback_uses_extracted_text_when_nothing_else_is_known() -> None:
    tags = extract_fallback_tags(extracted_text=["HAPPY BIRTHDAY", "ANNA"])

    assert [tag.name for tag in tags] == ["happy", "birthday", "anna"]


@pytest.mark.unit
def test_fallback_keeps_short_words_as_last_resort() -> None:
    tags = extract_fallback_tags(caption="a cat")

    assert [tag.name for tag in tags] == ["cat"]


@pytest.mark.unit
def test_fallback_is_empty_without_any_signal() -> None:
    assert extract_fallback_tags() == []
    assert extract_fallback_tags(objects=[], extracted_text=[]) == []
