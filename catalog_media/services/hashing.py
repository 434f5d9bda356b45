"""
Контентная идентичность загруженного изображения.

SHA-256 от исходных байтов: одинаковые байты всегда дают один и тот же хэш,
по нему работает дедупликация.
"""

import hashlib
import hmac
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from catalog_media.core.config import settings
from catalog_media.core.exceptions import InvalidInputError

HASH_LENGTH = 64


def compute_content_hash(data: bytes, *, product_id=None) -> str:
    if not data:
        raise InvalidInputError("Empty upload", product_id=product_id)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise InvalidInputError(
            f"Upload too large: {len(data)} bytes (limit {settings.MAX_UPLOAD_BYTES})",
            product_id=product_id,
        )
    if len(data) < settings.MIN_UPLOAD_BYTES:
        raise InvalidInputError(f"Upload too small: {len(data)} bytes", product_id=product_id)

    digest = hashlib.sha256(data).hexdigest()

    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise InvalidInputError(
            f"Upload is not a decodable image: {e}",
            product_id=product_id,
            content_hash=digest,
        ) from e

    return digest


def verify_digest(data: bytes, digest: str) -> bool:
    return hmac.compare_digest(hashlib.sha256(data).hexdigest(), digest)
