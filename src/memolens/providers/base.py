"""Provider invocation seam shared by analysis handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping


class ProviderName(str, Enum):
    """Analysis capabilities reachable through :class:`ProviderInvoker`."""

    CAPTIONING = "captioning"
    OBJECT_DETECTION = "object-detection"
    FACE_DETECTION = "face-detection"
    TEXT_EXTRACTION = "text-extraction"
    SCENE_CLASSIFICATION = "scene-classification"
    TAG_GENERATION = "tag-generation"


class ProviderInvoker(ABC):
    """Calls an external analysis capability.

    ``payload`` is either raw media bytes or a JSON-serialisable mapping.
    Implementations raise :class:`~memolens.exceptions.TransientProviderError`
    when the provider is temporarily unavailable and
    :class:`~memolens.exceptions.MalformedPayloadError` when it rejects the
    request outright.
    """

    @abstractmethod
    async def invoke(self, provider_name: str, payload: bytes | Mapping[str, Any]) -> Any:
        """Send ``payload`` to ``provider_name`` and return the decoded response."""

    async def aclose(self) -> None:
        """Release network resources held by the invoker."""


__all__ = ["ProviderInvoker", "ProviderName"]
