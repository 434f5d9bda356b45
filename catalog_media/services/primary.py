"""
PrimaryImageSelector: единственное главное изображение продукта.

is_primary в product_images - источник истины, Product.primary_image - кэш,
который обновляется в той же транзакции.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.exceptions import ImageNotFoundError, NoImagesError, ProductNotFoundError
from catalog_media.core.locks import pipeline_locks, primary_key
from catalog_media.crud import product_image as image_crud
from catalog_media.models import Product, ProductImage

logger = logging.getLogger("primary_image")


async def _lock_product(db: AsyncSession, product_id: int) -> Product:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", product_id=product_id)
    return product


def _apply(product: Product, images: List[ProductImage], target: Optional[ProductImage]) -> None:
    for image in images:
        image.is_primary = target is not None and image.id == target.id
    product.primary_image = target.url if target is not None else None


class PrimaryImageSelector:

    async def get_primary(self, db: AsyncSession, product_id: int) -> Optional[ProductImage]:
        return await image_crud.get_primary(db, product_id)

    async def set_primary(self, db: AsyncSession, product_id: int, asset_id: int) -> ProductImage:
        async with pipeline_locks.hold(primary_key(product_id)):
            try:
                product = await _lock_product(db, product_id)
                images = await image_crud.get_product_images(db, product_id, for_update=True)
                target = next((img for img in images if img.id == asset_id), None)
                if target is None:
                    raise ImageNotFoundError(
                        f"Image {asset_id} does not belong to product {product_id}",
                        product_id=product_id,
                    )
                _apply(product, images, target)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

        logger.info("Главное изображение продукта %s: %s", product_id, target.url)
        return target

    async def ensure_primary(self, db: AsyncSession, product_id: int) -> ProductImage:
        """
        Если у продукта есть изображения, но нет главного - назначает
        medium с наименьшим image_index (иначе любой размер).
        Транзакция завершается на любом выходе, блокировки строк не остаются.
        """
        async with pipeline_locks.hold(primary_key(product_id)):
            try:
                target = await self._ensure(db, product_id)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

        if target is None:
            raise NoImagesError("Product has no images", product_id=product_id)
        return target

    async def _ensure(self, db: AsyncSession, product_id: int) -> Optional[ProductImage]:
        product = await _lock_product(db, product_id)
        images = await image_crud.get_product_images(db, product_id, for_update=True)
        if not images:
            product.primary_image = None
            return None

        primaries = [img for img in images if img.is_primary]
        if len(primaries) == 1:
            target = primaries[0]
            product.primary_image = target.url
            return target

        if primaries:
            # больше одного главного - оставляем первый по порядку
            target = min(primaries, key=image_crud.sort_key)
            logger.warning(
                "У продукта %s было %d главных изображений, оставлено %s",
                product_id,
                len(primaries),
                target.id,
            )
        else:
            target = image_crud.pick_display_variant(images)
            logger.info("Продукту %s назначено главное изображение %s", product_id, target.id)

        _apply(product, images, target)
        return target
