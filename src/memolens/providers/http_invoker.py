"""HTTP provider invoker for Hugging Face style inference endpoints."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from ..exceptions import (
    MalformedPayloadError,
    ProviderResponseError,
    TransientProviderError,
)
from .base import ProviderInvoker, ProviderName

logger = logging.getLogger(__name__)

DEFAULT_MODELS: Mapping[str, str] = {
    ProviderName.CAPTIONING.value: "Salesforce/blip-image-captioning-large",
    ProviderName.OBJECT_DETECTION.value: "facebook/detr-resnet-50",
    ProviderName.FACE_DETECTION.value: "arnabdhar/YOLOv8-Face-Detection",
    ProviderName.TEXT_EXTRACTION.value: "microsoft/trocr-base-printed",
    ProviderName.SCENE_CLASSIFICATION.value: "google/vit-base-patch16-224",
    ProviderName.TAG_GENERATION.value: "mistralai/Mistral-7B-Instruct-v0.1",
}

_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class HttpProviderInvoker(ProviderInvoker):
    """POSTs media bytes or JSON bodies to ``{base_url}/{model}``."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        models: Mapping[str, str] | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.models = {**DEFAULT_MODELS, **dict(models or {})}
        self.timeout_seconds = timeout_seconds
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def endpoint_for(self, provider_name: str) -> str:
        name = provider_name.value if isinstance(provider_name, ProviderName) else provider_name
        model = self.models.get(name)
        if not model:
            raise MalformedPayloadError(f"No model configured for provider {name!r}")
        return f"{self.base_url}/{model}"

    async def invoke(self, provider_name: str, payload: bytes | Mapping[str, Any]) -> Any:
        url = self.endpoint_for(provider_name)
        try:
            if isinstance(payload, (bytes, bytearray)):
                response = await self._client.post(
                    url,
                    content=bytes(payload),
                    headers={"Content-Type": "application/octet-stream"},
                )
            else:
                response = await self._client.post(url, json=dict(payload))
        except httpx.TimeoutException as exc:
            raise TransientProviderError(f"{provider_name} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(f"{provider_name} unreachable: {exc}") from exc

        if response.status_code in _RETRYABLE_STATUS:
            logger.warning(
                "Provider %s answered %s; will retry",
                provider_name,
                response.status_code,
            )
            raise TransientProviderError(
                f"{provider_name} unavailable (status={response.status_code}): "
                f"{_extract_error(response)}"
            )
        if response.status_code >= 400:
            raise MalformedPayloadError(
                f"{provider_name} rejected the request (status={response.status_code}): "
                f"{_extract_error(response)}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderResponseError(f"{provider_name} returned a non-JSON body") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
    return str(data)[:200]


__all__ = ["DEFAULT_MODELS", "HttpProviderInvoker"]
