"""Tag synthesis helpers: prompt builder, response parser, rule-based fallback."""

from __future__ import annotations

import json
import re
import string
from typing import Any, Iterable, Sequence

from ..domain.models import DetectedObject, SceneLabel, Tag, TagCategory
from ..exceptions import ProviderResponseError

STOPWORDS = frozenset({"this", "that", "with", "from", "have", "there"})

OBJECT_TAG_CONFIDENCE = 0.8
LOCATION_TAG_CONFIDENCE = 0.7
CAPTION_TAG_CONFIDENCE = 0.5

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)

_PROMPT_FOOTER = """Generate tags for:
- Objects (specific items visible)
- People (if any)
- Emotions (mood of the image)
- Activities (what is happening)
- Locations (type of place)
- Events (occasion, celebration)

Return a JSON array of objects with "name", "category" and "confidence" keys."""


def build_tag_prompt(
    *,
    caption: str | None = None,
    object_names: Sequence[str] | None = None,
    scene: SceneLabel | None = None,
    extracted_text: Sequence[str] | None = None,
) -> str | None:
    """Build the tag-generation prompt from whichever signals are available.

    Returns ``None`` when there is nothing to describe. The output depends
    only on the arguments, so it doubles as a cache key source.
    """

    lines: list[str] = []
    if caption:
        lines.append(f"Caption: {caption.strip()}")
    if object_names:
        lines.append(f"Objects detected: {', '.join(object_names)}")
    if scene is not None and scene.is_known:
        lines.append(f"Scene: {scene.label}")
    if extracted_text:
        lines.append(f"Text found: {' '.join(extracted_text)}")
    if not lines:
        return None
    header = "Analyze this image description and generate relevant tags:"
    return "\n".join([header, *lines, "", _PROMPT_FOOTER])


def generated_text(data: Any) -> str:
    """Return the ``generated_text`` of a text-generation response."""

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        text = data.get("generated_text")
        if isinstance(text, str):
            return text
    raise ProviderResponseError("response carries no generated_text")


def parse_tag_response(data: Any) -> list[Tag]:
    """Extract validated tags from a tag-generation response.

    The model may wrap its JSON array in a fenced code block. Items with an
    unknown category or without a name are dropped; later duplicates of a
    name are ignored.
    """

    text = generated_text(data)
    match = _FENCED_JSON.search(text)
    candidate = match.group(1) if match else text
    start, end = candidate.find("["), candidate.rfind("]")
    if start == -1 or end < start:
        raise ProviderResponseError("tag response does not contain a JSON array")
    try:
        items = json.loads(candidate[start : end + 1])
    except ValueError as exc:
        raise ProviderResponseError("tag response is not valid JSON") from exc
    if not isinstance(items, list):
        raise ProviderResponseError("tag response is not a JSON array")

    tags: list[Tag] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict) or not str(item.get("name") or "").strip():
            continue
        try:
            tag = Tag.from_dict(item)
        except (KeyError, TypeError, ValueError):
            continue
        if tag.name in seen:
            continue
        seen.add(tag.name)
        tags.append(tag)
    return tags


def _salient_words(text: str, *, min_length: int = 4) -> Iterable[str]:
    for raw in text.lower().split():
        word = raw.strip(string.punctuation)
        if len(word) >= min_length and word not in STOPWORDS:
            yield word


def extract_fallback_tags(
    *,
    caption: str | None = None,
    objects: Sequence[DetectedObject] | None = None,
    scene: SceneLabel | None = None,
    extracted_text: Sequence[str] | None = None,
    caption_limit: int = 5,
) -> list[Tag]:
    """Rule-based tags used when tag generation fails or returns nothing.

    Objects become ``object`` tags, a known scene becomes one ``location``
    tag and up to ``caption_limit`` salient caption words become
    ``activity`` tags. When that yields nothing, words from the extracted
    text and finally the longest non-stopword word are used, so the result
    is empty only when there was no upstream signal at all.
    """

    tags: list[Tag] = []
    seen: set[tuple[str, TagCategory]] = set()

    def _add(name: str, category: TagCategory, confidence: float) -> bool:
        key = name.strip().lower()
        if not key or (key, category) in seen:
            return False
        # Words only add new names; objects and the scene keep their own category.
        if category is TagCategory.ACTIVITY and any(key == named for named, _ in seen):
            return False
        seen.add((key, category))
        tags.append(Tag(name=key, category=category, confidence=confidence))
        return True

    def _add_words(words: Iterable[str], limit: int) -> None:
        added = 0
        for word in words:
            if added >= limit:
                break
            if _add(word, TagCategory.ACTIVITY, CAPTION_TAG_CONFIDENCE):
                added += 1

    for obj in objects or ():
        _add(obj.name, TagCategory.OBJECT, OBJECT_TAG_CONFIDENCE)
    if scene is not None and scene.is_known:
        _add(scene.label, TagCategory.LOCATION, LOCATION_TAG_CONFIDENCE)
    if caption:
        _add_words(_salient_words(caption), caption_limit)
    text = " ".join(extracted_text or ())
    if not tags and text:
        _add_words(_salient_words(text), max(caption_limit, 1))
    if not tags:
        words = _salient_words(f"{caption or ''} {text}", min_length=1)
        _add_words(sorted(words, key=len, reverse=True), 1)
    return tags


__all__ = [
    "CAPTION_TAG_CONFIDENCE",
    "LOCATION_TAG_CONFIDENCE",
    "OBJECT_TAG_CONFIDENCE",
    "STOPWORDS",
    "build_tag_prompt",
    "extract_fallback_tags",
    "generated_text",
    "parse_tag_response",
]
