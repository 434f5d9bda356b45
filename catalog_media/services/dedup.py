"""
DeduplicationResolver: решает, что делать с загрузкой по её content_hash.

  MISS           - таких байтов нет: сохраняем все варианты
  SAME_PRODUCT   - уже привязаны к этому продукту: ничего не пишем
  OTHER_PRODUCT  - есть у другого продукта (global): новые строки на старые файлы

Область дедупликации (global/local) берётся из настроек один раз и действует
одинаково для поиска, раскладки ключей и сборки мусора.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.config import DedupScope, settings
from catalog_media.core.exceptions import DuplicateRaceError
from catalog_media.core.locks import blob_lock_key, dedup_key, image_index_key, pipeline_locks
from catalog_media.crud import product_image as image_crud
from catalog_media.models import ProductImage, SizeClass
from catalog_media.schemas.image import DedupOutcome
from catalog_media.services.image_store import ImageStore
from catalog_media.services.variants import Variant

logger = logging.getLogger("dedup")

VariantFactory = Callable[[], Awaitable[List[Variant]]]


@dataclass
class Resolution:
    outcome: DedupOutcome
    product_id: int
    content_hash: str
    existing: List[ProductImage] = field(default_factory=list)
    donor: List[ProductImage] = field(default_factory=list)
    blob_writes: int = 0

    @property
    def rows(self) -> List[ProductImage]:
        return self.existing

    @property
    def image_index(self) -> Optional[int]:
        return self.existing[0].image_index if self.existing else None


class DeduplicationResolver:

    def __init__(
        self,
        scope: Optional[DedupScope] = None,
        size_classes: Optional[List[SizeClass]] = None,
    ):
        self.scope = scope or settings.DEDUP_SCOPE
        self.size_classes = list(size_classes or SizeClass)

    def _complete(self, rows: List[ProductImage]) -> bool:
        return {row.size_class for row in rows} >= set(self.size_classes)

    async def resolve(
        self,
        db: AsyncSession,
        product_id: int,
        content_hash: str,
        *,
        for_update: bool = False,
    ) -> Resolution:
        lookup_product = product_id if self.scope == DedupScope.LOCAL else None
        rows = await image_crud.find_by_hash(
            db, content_hash, product_id=lookup_product, for_update=for_update
        )

        own = [row for row in rows if row.product_id == product_id]
        if own:
            return Resolution(DedupOutcome.SAME_PRODUCT, product_id, content_hash, existing=own)

        # донор - продукт с наименьшим id, у которого есть полный набор размеров
        by_product: dict[int, List[ProductImage]] = {}
        for row in rows:
            by_product.setdefault(row.product_id, []).append(row)
        for donor_id in sorted(by_product):
            donor_rows = by_product[donor_id]
            first_index = min(row.image_index for row in donor_rows)
            donor_set = [row for row in donor_rows if row.image_index == first_index]
            if self._complete(donor_set):
                return Resolution(DedupOutcome.OTHER_PRODUCT, product_id, content_hash, donor=donor_set)

        return Resolution(DedupOutcome.MISS, product_id, content_hash)

    async def resolve_and_write(
        self,
        db: AsyncSession,
        store: ImageStore,
        product_id: int,
        content_hash: str,
        make_variants: VariantFactory,
    ) -> Resolution:
        """
        Решение и запись под блокировкой (product_id, content_hash).
        Генерация вариантов всегда выполняется до захвата блокировки.

        Блокировка по хэшу держится до коммита записи: сборщик мусора
        (ImageStore._collect) берёт её же, поэтому не удалит файл донора,
        на который сейчас ставятся ссылки.
        """
        variants: Optional[List[Variant]] = None
        resolution = await self.resolve(db, product_id, content_hash)

        while True:
            if resolution.outcome == DedupOutcome.MISS and variants is None:
                variants = await make_variants()

            async with pipeline_locks.hold(dedup_key(product_id, content_hash)):
                async with pipeline_locks.hold(blob_lock_key(content_hash)):
                    resolution = await self.resolve(db, product_id, content_hash, for_update=True)
                    if resolution.outcome == DedupOutcome.MISS and variants is None:
                        # донор исчез, пока мы ждали - нужны собственные варианты
                        await db.commit()
                        continue
                    if resolution.outcome == DedupOutcome.SAME_PRODUCT:
                        await db.commit()
                        logger.info(
                            "Повторная загрузка: product_id=%s hash=%s уже есть",
                            product_id,
                            content_hash[:12],
                        )
                        return resolution
                    return await self._write(db, store, resolution, variants)

    async def _write(
        self,
        db: AsyncSession,
        store: ImageStore,
        resolution: Resolution,
        variants: Optional[List[Variant]],
    ) -> Resolution:
        product_id = resolution.product_id
        try:
            async with pipeline_locks.hold(image_index_key(product_id)):
                async with store.transaction() as tx:
                    image_index = await image_crud.next_image_index(db, product_id)
                    if resolution.outcome == DedupOutcome.OTHER_PRODUCT:
                        rows = await store.link_variant_set(product_id, image_index, resolution.donor)
                    else:
                        rows = await store.add_variant_set(
                            product_id, resolution.content_hash, image_index, variants
                        )
        except IntegrityError as e:
            raise DuplicateRaceError(
                "Concurrent ingestion conflict",
                product_id=product_id,
                content_hash=resolution.content_hash,
            ) from e

        resolution.existing = rows
        resolution.blob_writes = tx.blob_writes
        logger.info(
            "Изображение сохранено: product_id=%s index=%s hash=%s (%s, новых файлов: %d)",
            product_id,
            image_index,
            resolution.content_hash[:12],
            resolution.outcome.value,
            tx.blob_writes,
        )
        return resolution
