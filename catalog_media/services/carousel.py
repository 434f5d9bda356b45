"""
CarouselCurator: упорядоченный набор записей карусели на главной.

Порядок активных записей: display_order по возрастанию, при равенстве - id.
Деактивация не удаляет строку; повторная активация без порядка ставит запись
в конец.
"""

import logging
from typing import AsyncIterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from catalog_media.core.exceptions import (
    CarouselEntryNotFoundError,
    ImageNotFoundError,
    InvalidInputError,
    ProductNotFoundError,
)
from catalog_media.core.locks import CAROUSEL_KEY, pipeline_locks
from catalog_media.models import CarouselEntry, Product, ProductImage
from catalog_media.schemas.carousel import CarouselFeedItem

logger = logging.getLogger("carousel")


def _active_ordered():
    return (
        select(CarouselEntry)
        .where(CarouselEntry.active.is_(True))
        .order_by(CarouselEntry.display_order, CarouselEntry.id)
        .execution_options(populate_existing=True)
    )


class CarouselFeed:
    """
    Ленивая конечная последовательность активных записей.
    Каждый новый проход заново читает БД, поэтому её можно перезапускать.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def __aiter__(self) -> AsyncIterator[CarouselEntry]:
        result = await self.db.stream_scalars(_active_ordered())
        try:
            async for entry in result:
                yield entry
        finally:
            await result.close()

    async def all(self) -> List[CarouselEntry]:
        return [entry async for entry in self]


class CarouselCurator:

    async def _get_entry(self, db: AsyncSession, entry_id: int) -> CarouselEntry:
        result = await db.execute(
            select(CarouselEntry)
            .where(CarouselEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise CarouselEntryNotFoundError(entry_id)
        return entry

    async def create_entry(
        self,
        db: AsyncSession,
        product_id: int,
        image_id: Optional[int] = None,
        title: Optional[str] = None,
    ) -> CarouselEntry:
        """Только административное действие; загрузка изображений записи не создаёт."""
        if await db.get(Product, product_id) is None:
            raise ProductNotFoundError(f"Product {product_id} not found", product_id=product_id)
        if image_id is not None:
            image = await db.get(ProductImage, image_id)
            if image is None or image.product_id != product_id:
                raise ImageNotFoundError(
                    f"Image {image_id} does not belong to product {product_id}",
                    product_id=product_id,
                )

        entry = CarouselEntry(product_id=product_id, image_id=image_id, title=title, active=False)
        db.add(entry)
        await db.commit()
        return entry

    async def activate(self, db: AsyncSession, entry_id: int, order: Optional[int] = None) -> CarouselEntry:
        async with pipeline_locks.hold(CAROUSEL_KEY):
            try:
                entry = await self._get_entry(db, entry_id)
                if order is not None and order < 1:
                    raise InvalidInputError(
                        f"display_order must be >= 1, got {order}", product_id=entry.product_id
                    )

                result = await db.execute(_active_ordered().where(CarouselEntry.id != entry.id))
                others = list(result.scalars().all())

                if order is None:
                    # активная запись без нового порядка остаётся на месте
                    if not entry.active or entry.display_order is None:
                        last = max((other.display_order for other in others), default=0)
                        entry.display_order = last + 1
                else:
                    if any(other.display_order == order for other in others):
                        for other in others:
                            if other.display_order >= order:
                                other.display_order += 1
                    entry.display_order = order

                entry.active = True
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

        logger.info("Карусель: запись %s активна, позиция %s", entry.id, entry.display_order)
        return entry

    async def deactivate(self, db: AsyncSession, entry_id: int) -> CarouselEntry:
        async with pipeline_locks.hold(CAROUSEL_KEY):
            try:
                entry = await self._get_entry(db, entry_id)
                entry.active = False
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

        logger.info("Карусель: запись %s скрыта", entry_id)
        return entry

    def list(self, db: AsyncSession) -> CarouselFeed:
        return CarouselFeed(db)

    async def feed(self, db: AsyncSession) -> List[CarouselFeedItem]:
        result = await db.execute(
            _active_ordered().options(
                selectinload(CarouselEntry.image),
                selectinload(CarouselEntry.product),
            )
        )
        items = []
        for entry in result.scalars().all():
            if entry.image is not None:
                image_url = entry.image.url
            else:
                image_url = entry.product.primary_image if entry.product else None
            items.append(
                CarouselFeedItem(
                    entry_id=entry.id,
                    product_id=entry.product_id,
                    image_id=entry.image_id,
                    image_url=image_url,
                    title=entry.title,
                    display_order=entry.display_order,
                )
            )
        return items

    async def normalize(self, db: AsyncSession) -> List[CarouselEntry]:
        """Перенумеровать активные записи 1..n, сохраняя порядок."""
        async with pipeline_locks.hold(CAROUSEL_KEY):
            try:
                result = await db.execute(_active_ordered())
                entries = list(result.scalars().all())
                for position, entry in enumerate(entries, start=1):
                    entry.display_order = position
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
        return entries

    async def count_active(self, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count(CarouselEntry.id)).where(CarouselEntry.active.is_(True))
        )
        return result.scalar_one()
