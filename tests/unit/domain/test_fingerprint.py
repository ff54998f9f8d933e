from __future__ import annotations

import pytest

from src.memolens.domain.fingerprint import cache_key, fingerprint, fingerprint_text


@pytest.mark.unit
def test_fingerprint_is_full_sha256_hex() -> None:
    digest = fingerprint(b"abc")

    assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert len(digest) == 64


@pytest.mark.unit
def test_fingerprint_is_stable_and_content_sensitive() -> None:
    assert fingerprint(b"photo-bytes") == fingerprint(bytearray(b"photo-bytes"))
    assert fingerprint(b"photo-bytes") != fingerprint(b"photo-bytes!")


@pytest.mark.unit
def test_fingerprint_rejects_text() -> None:
    with pytest.raises(TypeError):
        fingerprint("not bytes")  # type: ignore[arg-type]


@pytest.mark.unit
def test_fingerprint_text_hashes_utf8() -> None:
    assert fingerprint_text("héllo") == fingerprint("héllo".encode("utf-8"))


@pytest.mark.unit
def test_cache_key_joins_kind_and_digest() -> None:
    assert cache_key("caption", "ab" * 32) == f"caption:{'ab' * 32}"
