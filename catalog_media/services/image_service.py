"""
ImageService — приём изображений товара: хэш, дедупликация, варианты WebP,
главное изображение.

Используется:
  - админкой при ручной загрузке (байты файла)
  - Celery задачей для загрузки по внешнему URL
  - скриптами обслуживания (удаление изображений, ремонт главного)
"""

import asyncio
import logging
from typing import Optional

import requests
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.config import settings
from catalog_media.core.exceptions import (
    DuplicateRaceError,
    ImageNotFoundError,
    ImagePipelineError,
    InvalidInputError,
    NoImagesError,
    StorageIOError,
)
from catalog_media.crud import product as product_crud
from catalog_media.crud import product_image as image_crud
from catalog_media.schemas.image import DeleteImageResult, IngestResult
from catalog_media.services.dedup import DeduplicationResolver
from catalog_media.services.hashing import compute_content_hash
from catalog_media.services.image_store import ImageStore
from catalog_media.services.primary import PrimaryImageSelector
from catalog_media.services.storage import BlobStorage, LocalBlobStorage
from catalog_media.services.variants import VariantGenerator

logger = logging.getLogger("image_service")

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
}

DUPLICATE_RACE_RETRIES = 1


class ImageService:

    def __init__(
        self,
        storage: Optional[BlobStorage] = None,
        generator: Optional[VariantGenerator] = None,
        resolver: Optional[DeduplicationResolver] = None,
        selector: Optional[PrimaryImageSelector] = None,
    ):
        self.storage = storage or LocalBlobStorage()
        self.generator = generator or VariantGenerator()
        self.resolver = resolver or DeduplicationResolver(size_classes=self.generator.size_classes)
        self.selector = selector or PrimaryImageSelector()

    def store(self, db: AsyncSession) -> ImageStore:
        return ImageStore(db, self.storage, scope=self.resolver.scope)

    @staticmethod
    def download_image(url: str) -> bytes:
        """
        Скачивает изображение по URL.
        Ошибки сети - StorageIOError (временная), неподходящий ответ - InvalidInputError.
        """
        try:
            response = requests.get(
                url,
                headers=HEADERS,
                timeout=settings.DOWNLOAD_TIMEOUT,
                stream=True,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning("Ошибка скачивания %s: %s", url, e)
            raise StorageIOError(f"Download failed for {url}: {e}", transient=True) from e

        # Проверяем Content-Type
        content_type = response.headers.get("Content-Type", "")
        if not content_type.startswith("image/"):
            logger.warning("Не изображение: %s (Content-Type: %s)", url, content_type)
            raise InvalidInputError(f"Not an image: {url} ({content_type})")

        # Проверяем размер
        content_length = response.headers.get("Content-Length")
        if content_length and int(content_length) > settings.MAX_UPLOAD_BYTES:
            logger.warning("Файл слишком большой: %s (%s bytes)", url, content_length)
            raise InvalidInputError(f"File too large: {url} ({content_length} bytes)")

        return response.content

    async def ingest(
        self,
        db: AsyncSession,
        product_id: int,
        data: bytes,
        is_primary: bool = False,
    ) -> IngestResult:
        content_hash = compute_content_hash(data, product_id=product_id)
        await product_crud.require_product(db, product_id)
        store = self.store(db)

        async def make_variants():
            # CPU-работа вне event loop и вне блокировок
            return await asyncio.to_thread(
                self.generator.generate_from_bytes,
                data,
                product_id=product_id,
                content_hash=content_hash,
            )

        attempt = 0
        while True:
            try:
                resolution = await self.resolver.resolve_and_write(
                    db, store, product_id, content_hash, make_variants
                )
                break
            except DuplicateRaceError:
                attempt += 1
                if attempt > DUPLICATE_RACE_RETRIES:
                    logger.error(
                        "Конфликт параллельной загрузки не разрешён: product_id=%s hash=%s",
                        product_id,
                        content_hash[:12],
                    )
                    raise
                logger.warning(
                    "Конфликт параллельной загрузки, повтор: product_id=%s hash=%s",
                    product_id,
                    content_hash[:12],
                )
            except ImagePipelineError as e:
                # ошибки хранилища приходят без продукта и хэша
                e.add_context(product_id=product_id, content_hash=content_hash)
                logger.warning("Загрузка отклонена: %s", e)
                raise

        if is_primary:
            target = image_crud.pick_display_variant(resolution.existing)
            await self.selector.set_primary(db, product_id, target.id)
        else:
            await self.selector.ensure_primary(db, product_id)

        product = await product_crud.require_product(db, product_id)
        return IngestResult(
            product_id=product_id,
            content_hash=content_hash,
            outcome=resolution.outcome,
            image_index=resolution.image_index,
            blob_writes=resolution.blob_writes,
            primary_image=product.primary_image,
            images=await store.descriptors(product_id),
        )

    async def ingest_from_url(
        self,
        db: AsyncSession,
        product_id: int,
        url: str,
        is_primary: bool = False,
    ) -> IngestResult:
        try:
            data = await asyncio.to_thread(self.download_image, url)
        except ImagePipelineError as e:
            raise e.add_context(product_id=product_id)
        result = await self.ingest(db, product_id, data, is_primary=is_primary)
        logger.info(
            "Сохранено: %s → product_id=%s index=%s (%s)",
            url[:80],
            product_id,
            result.image_index,
            result.outcome.value,
        )
        return result

    async def get_descriptors(self, db: AsyncSession, product_id: int):
        await product_crud.require_product(db, product_id)
        return await self.store(db).descriptors(product_id)

    async def delete_image(self, db: AsyncSession, product_id: int, image_index: int) -> DeleteImageResult:
        """Удаляет все размеры одного логического изображения."""
        store = self.store(db)
        async with store.transaction():
            rows = await image_crud.get_image_set(db, product_id, image_index)
            if not rows:
                raise ImageNotFoundError(
                    f"Image #{image_index} not found", product_id=product_id
                )
            content_hash = rows[0].content_hash
            released = await store.delete_rows(rows)

        try:
            primary = await self.selector.ensure_primary(db, product_id)
            primary_url = primary.url
        except NoImagesError:
            primary_url = None

        logger.info(
            "Удалено изображение #%d продукта %d (hash=%s)",
            image_index,
            product_id,
            content_hash[:12],
        )
        return DeleteImageResult(
            product_id=product_id,
            image_index=image_index,
            deleted_rows=len(released),
            removed_blobs=[item.blob_key for item in released if item.blob_removed],
            primary_image=primary_url,
        )

    async def delete_product_images(self, db: AsyncSession, product_id: int) -> int:
        store = self.store(db)
        async with store.transaction():
            rows = await image_crud.get_product_images(db, product_id)
            released = await store.delete_rows(rows)
        try:
            # сбрасывает кэш primary_image у продукта
            await self.selector.ensure_primary(db, product_id)
        except NoImagesError:
            pass
        logger.info("Удалены изображения продукта %d", product_id)
        return len(released)
