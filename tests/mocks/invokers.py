"""Scripted provider invoker used instead of real inference endpoints."""

from __future__ import annotations

import inspect
import json
from collections import Counter
from typing import Any, Mapping

from src.memolens.providers.base import ProviderInvoker

TAGS_JSON = json.dumps(
    [
        {"name": "Dog", "category": "object", "confidence": 0.92},
        {"name": "park", "category": "location", "confidence": 0.8},
        {"name": "playing", "category": "activity", "confidence": 0.7},
    ]
)

DEFAULT_RESPONSES: dict[str, Any] = {
    "captioning": [{"generated_text": "a brown dog playing fetch in the park"}],
    "object-detection": [
        {"label": "dog", "score": 0.97, "box": {"xmin": 10, "ymin": 20, "xmax": 110, "ymax": 140}},
        {"label": "ball", "score": 0.81, "box": {"xmin": 5, "ymin": 5, "xmax": 15, "ymax": 15}},
        {"label": "dog", "score": 0.61, "box": {"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}},
        {"label": "bench", "score": 0.3, "box": {"xmin": 0, "ymin": 0, "xmax": 1, "ymax": 1}},
    ],
    "face-detection": [
        {"score": 0.88, "box": {"xmin": 40, "ymin": 30, "xmax": 80, "ymax": 90}},
    ],
    "text-extraction": [{"generated_text": "PARK RULES\n\n  keep dogs on leash  \n"}],
    "scene-classification": [
        {"label": "park", "score": 0.74},
        {"label": "garden", "score": 0.12},
    ],
    "tag-generation": [{"generated_text": f"Here are the tags:\n```json\n{TAGS_JSON}\n```"}],
}


class ScriptedInvoker(ProviderInvoker):
    """Returns canned responses per provider.

    A scripted value may be a plain response, an exception instance to
    raise, or a callable receiving the payload (sync or async).
    """

    def __init__(self, responses: Mapping[str, Any] | None = None) -> None:
        self.responses: dict[str, Any] = {**DEFAULT_RESPONSES, **dict(responses or {})}
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    @property
    def call_counts(self) -> Counter[str]:
        return Counter(name for name, _ in self.calls)

    async def invoke(self, provider_name: str, payload: bytes | Mapping[str, Any]) -> Any:
        self.calls.append((provider_name, payload))
        response = self.responses[provider_name]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(payload)
            if inspect.isawaitable(response):
                response = await response
        return response

    async def aclose(self) -> None:
        self.closed = True


__all__ = ["DEFAULT_RESPONSES", "ScriptedInvoker", "TAGS_JSON"]
