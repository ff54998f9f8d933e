"""Content fingerprinting used for cache keys and job deduplication."""

from __future__ import annotations

import hashlib

FINGERPRINT_ALGORITHM = "sha256"


def fingerprint(data: bytes) -> str:
    """Return the full SHA-256 hex digest of ``data``.

    The digest is never truncated: it is the identity of the content across
    processes and restarts.
    """

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError("fingerprint expects a bytes-like object")
    return hashlib.sha256(data).hexdigest()


def fingerprint_text(text: str) -> str:
    """Fingerprint the UTF-8 encoding of ``text``."""

    return fingerprint(text.encode("utf-8"))


def cache_key(kind: str, digest: str) -> str:
    """Build the ``{kind}:{fingerprint}`` cache key."""

    return f"{kind}:{digest}"


__all__ = ["FINGERPRINT_ALGORITHM", "cache_key", "fingerprint", "fingerprint_text"]
