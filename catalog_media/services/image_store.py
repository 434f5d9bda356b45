"""
ImageStore: байты вариантов в blob storage плюс индекс метаданных в БД.

Все записи одной загрузки идут в одной транзакции: строки и файлы
фиксируются вместе или не фиксируются вовсе. Файл удаляется только
когда на его blob_key не осталось ни одной строки.
"""

import hashlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.config import DedupScope, settings
from catalog_media.core.exceptions import ImageNotFoundError
from catalog_media.core.locks import blob_lock_key, pipeline_locks
from catalog_media.crud import product_image as image_crud
from catalog_media.models import ProductImage, SizeClass
from catalog_media.schemas.image import ImageDescriptor
from catalog_media.services.storage import BlobStorage
from catalog_media.services.variants import Variant

logger = logging.getLogger("image_store")


@dataclass(frozen=True)
class BlobLocation:
    key: str
    url: str
    created: bool


@dataclass
class DeleteResult:
    asset_id: int
    product_id: int
    blob_key: str
    content_hash: str
    blob_removed: bool = False


@dataclass
class TransactionScope:
    created_blobs: List[str] = field(default_factory=list)
    released: List[DeleteResult] = field(default_factory=list)

    @property
    def blob_writes(self) -> int:
        return len(self.created_blobs)


def build_blob_key(
    digest: str,
    size_class: SizeClass,
    extension: str = "webp",
    namespace: Optional[str] = None,
) -> str:
    key = f"{size_class.value}/{digest[:2]}/{digest}.{extension}"
    return f"{namespace}/{key}" if namespace else key


class ImageStore:

    def __init__(self, db: AsyncSession, storage: BlobStorage, scope: Optional[DedupScope] = None):
        self.db = db
        self.storage = storage
        self.scope = scope or settings.DEDUP_SCOPE
        self._tx: Optional[TransactionScope] = None

    def namespace_for(self, product_id: int) -> Optional[str]:
        if self.scope == DedupScope.LOCAL:
            return f"products/{product_id}"
        return None

    # === Транзакция ===

    @asynccontextmanager
    async def transaction(self):
        if self._tx is not None:
            # вложенный вызов присоединяется к внешней транзакции
            yield self._tx
            return

        scope = TransactionScope()
        self._tx = scope
        try:
            yield scope
            await self.db.commit()
        except BaseException:
            # сюда попадает и asyncio.CancelledError (обрыв клиента)
            self._tx = None
            await self.db.rollback()
            await self._discard_created(scope.created_blobs)
            raise
        self._tx = None
        await self._collect(scope.released)

    async def _discard_created(self, keys: Iterable[str]) -> None:
        for key in keys:
            try:
                if await image_crud.count_blob_references(self.db, key) == 0:
                    await self.storage.delete(key)
                    logger.info("Откат: удалён файл %s", key)
            except Exception:
                logger.error("Не удалось убрать файл %s после отката", key, exc_info=True)

    async def _collect(self, released: Iterable[DeleteResult]) -> None:
        for item in released:
            # та же блокировка, что у записи ссылок на донора
            async with pipeline_locks.hold(blob_lock_key(item.content_hash)):
                if await image_crud.count_blob_references(self.db, item.blob_key) == 0:
                    item.blob_removed = await self.storage.delete(item.blob_key)
                    logger.info("Удалён файл без ссылок: %s", item.blob_key)

    def _require_tx(self) -> TransactionScope:
        if self._tx is None:
            raise RuntimeError("ImageStore write outside of transaction()")
        return self._tx

    # === Запись ===

    async def put(
        self,
        blob: bytes,
        size_class: SizeClass,
        *,
        namespace: Optional[str] = None,
        extension: str = "webp",
    ) -> BlobLocation:
        digest = hashlib.sha256(blob).hexdigest()
        key = build_blob_key(digest, size_class, extension, namespace)
        created = await self.storage.put(key, blob)
        if created and self._tx is not None:
            self._tx.created_blobs.append(key)
        return BlobLocation(key=key, url=self.storage.url_for(key), created=created)

    async def add_variant_set(
        self,
        product_id: int,
        content_hash: str,
        image_index: int,
        variants: List[Variant],
    ) -> List[ProductImage]:
        self._require_tx()
        namespace = self.namespace_for(product_id)
        rows = []
        for variant in variants:
            location = await self.put(
                variant.data,
                variant.size_class,
                namespace=namespace,
                extension=variant.extension,
            )
            rows.append(
                ProductImage(
                    product_id=product_id,
                    content_hash=content_hash,
                    size_class=variant.size_class,
                    image_index=image_index,
                    is_primary=False,
                    url=location.url,
                    blob_key=location.key,
                    mime_type=variant.mime_type,
                    width=variant.width,
                    height=variant.height,
                    file_size=variant.file_size,
                )
            )
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    async def link_variant_set(
        self,
        product_id: int,
        image_index: int,
        donor_rows: List[ProductImage],
    ) -> List[ProductImage]:
        """Новые строки продукта, ссылающиеся на уже сохранённые файлы."""
        self._require_tx()
        rows = [
            ProductImage(
                product_id=product_id,
                content_hash=donor.content_hash,
                size_class=donor.size_class,
                image_index=image_index,
                is_primary=False,
                url=donor.url,
                blob_key=donor.blob_key,
                mime_type=donor.mime_type,
                width=donor.width,
                height=donor.height,
                file_size=donor.file_size,
            )
            for donor in donor_rows
        ]
        self.db.add_all(rows)
        await self.db.flush()
        return rows

    # === Индекс ===

    async def index(
        self,
        content_hash: str,
        product_id: Optional[int] = None,
    ) -> Set[Tuple[int, SizeClass]]:
        rows = await image_crud.find_by_hash(self.db, content_hash, product_id=product_id)
        return {(row.product_id, row.size_class) for row in rows}

    async def descriptors(self, product_id: int) -> List[ImageDescriptor]:
        rows = await image_crud.get_product_images(self.db, product_id)
        return [ImageDescriptor.model_validate(row) for row in rows]

    # === Удаление ===

    async def delete_rows(self, rows: List[ProductImage]) -> List[DeleteResult]:
        scope = self._require_tx()
        await image_crud.detach_from_carousel(self.db, [row.id for row in rows])
        results = []
        for row in rows:
            result = DeleteResult(
                asset_id=row.id,
                product_id=row.product_id,
                blob_key=row.blob_key,
                content_hash=row.content_hash,
            )
            await self.db.delete(row)
            scope.released.append(result)
            results.append(result)
        await self.db.flush()
        return results

    async def delete(self, asset_id: int) -> DeleteResult:
        async with self.transaction():
            row = await image_crud.get_image(self.db, asset_id)
            if row is None:
                raise ImageNotFoundError(f"Image {asset_id} not found")
            (result,) = await self.delete_rows([row])
        return result
