import hashlib

import pytest

from catalog_media.core.config import settings
from catalog_media.core.exceptions import InvalidInputError
from catalog_media.services.hashing import HASH_LENGTH, compute_content_hash, verify_digest
from conftest import make_image_bytes


def test_identical_bytes_share_identity():
    data = make_image_bytes()

    first = compute_content_hash(data)
    second = compute_content_hash(bytes(data))

    assert first == second
    assert len(first) == HASH_LENGTH
    assert first == hashlib.sha256(data).hexdigest()


def test_different_bytes_get_different_identity():
    red = make_image_bytes(color=(255, 0, 0))
    blue = make_image_bytes(color=(0, 0, 255))

    assert compute_content_hash(red) != compute_content_hash(blue)


def test_empty_upload_is_rejected():
    with pytest.raises(InvalidInputError) as exc_info:
        compute_content_hash(b"", product_id=7)

    assert exc_info.value.product_id == 7


def test_undecodable_upload_is_rejected_with_hash():
    garbage = b"definitely not an image" * 10

    with pytest.raises(InvalidInputError) as exc_info:
        compute_content_hash(garbage, product_id=3)

    assert exc_info.value.content_hash == hashlib.sha256(garbage).hexdigest()
    assert "product_id=3" in str(exc_info.value)


def test_oversized_upload_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 100)

    with pytest.raises(InvalidInputError, match="too large"):
        compute_content_hash(make_image_bytes())


def test_verify_digest():
    data = make_image_bytes()
    digest = compute_content_hash(data)

    assert verify_digest(data, digest)
    assert not verify_digest(data + b"\x00", digest)
