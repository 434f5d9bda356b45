"""
Генерация размерных вариантов изображения (thumb / small / medium / large).

Каждый размер описан политикой: целевой бокс, формат, качество. Для одного и
того же исходника и политики результат побайтно одинаков, поэтому варианты
тоже можно дедуплицировать по содержимому.
"""

import hashlib
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from catalog_media.core.config import settings
from catalog_media.core.exceptions import TransformError, UnsupportedFormatError
from catalog_media.models.product_image import SizeClass

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = frozenset({"JPEG", "PNG", "WEBP"})

MIME_TYPES = {
    "WEBP": "image/webp",
    "JPEG": "image/jpeg",
    "PNG": "image/png",
}


@dataclass(frozen=True)
class VariantPolicy:
    width: int
    height: int
    format: str = "WEBP"
    quality: int = 85
    method: int = 4

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]

    @property
    def extension(self) -> str:
        return self.format.lower()


def default_policies() -> Dict[SizeClass, VariantPolicy]:
    quality = settings.WEBP_QUALITY
    method = settings.WEBP_METHOD
    return {
        SizeClass.THUMB: VariantPolicy(150, 150, quality=quality, method=method),
        SizeClass.SMALL: VariantPolicy(300, 300, quality=quality, method=method),
        SizeClass.MEDIUM: VariantPolicy(600, 600, quality=quality, method=method),
        SizeClass.LARGE: VariantPolicy(1200, 1200, quality=quality, method=method),
    }


VARIANT_POLICIES = default_policies()


@dataclass(frozen=True)
class Variant:
    size_class: SizeClass
    data: bytes
    width: int
    height: int
    mime_type: str
    extension: str

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    @property
    def file_size(self) -> int:
        return len(self.data)


def decode_image(data: bytes, *, product_id=None, content_hash=None) -> Image.Image:
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except UnidentifiedImageError as e:
        raise UnsupportedFormatError(
            "Unrecognized image encoding", product_id=product_id, content_hash=content_hash
        ) from e
    except (OSError, SyntaxError, ValueError) as e:
        raise UnsupportedFormatError(
            f"Cannot decode image: {e}", product_id=product_id, content_hash=content_hash
        ) from e

    if img.format not in ALLOWED_FORMATS:
        raise UnsupportedFormatError(
            f"Unsupported image format: {img.format}",
            product_id=product_id,
            content_hash=content_hash,
        )
    return img


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "P"):
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _fit_cover(img: Image.Image, width: int, height: int) -> Image.Image:
    """Обрезка по центру под пропорции бокса, без увеличения исходника."""
    src_w, src_h = img.size
    scale = max(width / src_w, height / src_h)
    if scale < 1:
        return ImageOps.fit(img, (width, height), Image.LANCZOS, centering=(0.5, 0.5))

    ratio = width / height
    if src_w / src_h > ratio:
        crop_w, crop_h = max(1, round(src_h * ratio)), src_h
    else:
        crop_w, crop_h = src_w, max(1, round(src_w / ratio))
    left = (src_w - crop_w) // 2
    top = (src_h - crop_h) // 2
    return img.crop((left, top, left + crop_w, top + crop_h))


class VariantGenerator:

    def __init__(self, policies: Optional[Dict[SizeClass, VariantPolicy]] = None):
        self.policies = dict(policies or VARIANT_POLICIES)

    @property
    def size_classes(self) -> List[SizeClass]:
        return [size for size in SizeClass if size in self.policies]

    def generate(self, image: Image.Image, *, product_id=None, content_hash=None) -> List[Variant]:
        """
        Строит все варианты разом. Любая ошибка прерывает весь набор:
        частичный список наружу не отдаётся.
        """
        width, height = image.size
        if width <= 0 or height <= 0:
            raise TransformError(
                f"Degenerate source image {width}x{height}",
                product_id=product_id,
                content_hash=content_hash,
            )

        try:
            source = _flatten(ImageOps.exif_transpose(image))
        except (OSError, ValueError) as e:
            raise TransformError(
                f"Cannot prepare source image: {e}", product_id=product_id, content_hash=content_hash
            ) from e

        variants = []
        for size_class in self.size_classes:
            policy = self.policies[size_class]
            try:
                resized = _fit_cover(source, policy.width, policy.height)
                output = BytesIO()
                resized.save(
                    output,
                    format=policy.format,
                    quality=policy.quality,
                    method=policy.method,
                )
            except (OSError, ValueError, ZeroDivisionError) as e:
                raise TransformError(
                    f"Failed to build {size_class.value} variant: {e}",
                    product_id=product_id,
                    content_hash=content_hash,
                ) from e

            variants.append(
                Variant(
                    size_class=size_class,
                    data=output.getvalue(),
                    width=resized.width,
                    height=resized.height,
                    mime_type=policy.mime_type,
                    extension=policy.extension,
                )
            )

        logger.debug(
            "Сгенерировано %d вариантов (product_id=%s, hash=%s)",
            len(variants),
            product_id,
            content_hash,
        )
        return variants

    def generate_from_bytes(self, data: bytes, *, product_id=None, content_hash=None) -> List[Variant]:
        image = decode_image(data, product_id=product_id, content_hash=content_hash)
        try:
            return self.generate(image, product_id=product_id, content_hash=content_hash)
        finally:
            image.close()
