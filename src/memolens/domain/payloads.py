"""JSON payload shapes carried by analysis and notification jobs."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Mapping

from ..exceptions import MalformedPayloadError
from .models import MediaBlob


def encode_media_payload(blob: MediaBlob, *, fingerprint: str) -> dict[str, Any]:
    """Media travels base64-encoded next to its fingerprint."""

    return {
        "media": base64.b64encode(blob.data).decode("ascii"),
        "mimetype": blob.mimetype,
        "fingerprint": fingerprint,
    }


def decode_media_payload(payload: Mapping[str, Any]) -> bytes:
    encoded = payload.get("media")
    if not isinstance(encoded, str) or not encoded:
        raise MalformedPayloadError("payload is missing base64 'media'")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedPayloadError("payload 'media' is not valid base64") from exc
    if not data:
        raise MalformedPayloadError("payload 'media' is empty")
    return data


def notification_payload(
    *,
    notification_id: str,
    user_id: str,
    kind: str,
    title: str,
    message: str,
    data: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "notification_id": notification_id,
        "user_id": user_id,
        "kind": kind,
        "title": title,
        "message": message,
        "data": dict(data) if data is not None else None,
    }


__all__ = ["decode_media_payload", "encode_media_payload", "notification_payload"]
