import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.models import CarouselEntry, ProductImage, SizeClass

logger = logging.getLogger(__name__)


def sort_key(image: ProductImage):
    return (image.image_index, image.size_class.rank, image.id or 0)


async def get_image(db: AsyncSession, image_id: int) -> Optional[ProductImage]:
    result = await db.execute(
        select(ProductImage)
        .where(ProductImage.id == image_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_product_images(
    db: AsyncSession,
    product_id: int,
    *,
    for_update: bool = False,
) -> List[ProductImage]:
    stmt = (
        select(ProductImage)
        .where(ProductImage.product_id == product_id)
        .order_by(ProductImage.image_index, ProductImage.id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return sorted(result.scalars().all(), key=sort_key)


async def get_image_set(db: AsyncSession, product_id: int, image_index: int) -> List[ProductImage]:
    result = await db.execute(
        select(ProductImage)
        .where(
            ProductImage.product_id == product_id,
            ProductImage.image_index == image_index,
        )
        .execution_options(populate_existing=True)
    )
    return sorted(result.scalars().all(), key=sort_key)


async def find_by_hash(
    db: AsyncSession,
    content_hash: str,
    *,
    product_id: Optional[int] = None,
    for_update: bool = False,
) -> List[ProductImage]:
    stmt = (
        select(ProductImage)
        .where(ProductImage.content_hash == content_hash)
        .order_by(ProductImage.product_id, ProductImage.image_index, ProductImage.id)
        .execution_options(populate_existing=True)
    )
    if product_id is not None:
        stmt = stmt.where(ProductImage.product_id == product_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return sorted(result.scalars().all(), key=lambda img: (img.product_id, *sort_key(img)))


async def next_image_index(db: AsyncSession, product_id: int) -> int:
    result = await db.execute(
        select(func.max(ProductImage.image_index)).where(ProductImage.product_id == product_id)
    )
    current = result.scalar_one_or_none()
    return 0 if current is None else current + 1


async def count_blob_references(db: AsyncSession, blob_key: str) -> int:
    result = await db.execute(
        select(func.count(ProductImage.id)).where(ProductImage.blob_key == blob_key)
    )
    return result.scalar_one()


async def get_primary(db: AsyncSession, product_id: int) -> Optional[ProductImage]:
    result = await db.execute(
        select(ProductImage)
        .where(ProductImage.product_id == product_id, ProductImage.is_primary.is_(True))
        .order_by(ProductImage.image_index, ProductImage.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def products_without_primary(db: AsyncSession) -> List[int]:
    has_primary = (
        select(ProductImage.product_id)
        .where(ProductImage.is_primary.is_(True))
        .distinct()
    )
    result = await db.execute(
        select(ProductImage.product_id)
        .where(ProductImage.product_id.not_in(has_primary))
        .distinct()
        .order_by(ProductImage.product_id)
    )
    return list(result.scalars().all())


async def detach_from_carousel(db: AsyncSession, image_ids: List[int]) -> None:
    if not image_ids:
        return
    await db.execute(
        update(CarouselEntry)
        .where(CarouselEntry.image_id.in_(image_ids))
        .values(image_id=None)
        .execution_options(synchronize_session=False)
    )


def pick_display_variant(images: List[ProductImage]) -> Optional[ProductImage]:
    """medium с наименьшим image_index, иначе первый любого размера."""
    if not images:
        return None
    medium = [img for img in images if img.size_class == SizeClass.MEDIUM]
    candidates = medium or images
    return min(candidates, key=lambda img: (img.image_index, img.id or 0))
