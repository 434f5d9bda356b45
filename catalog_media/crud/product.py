import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_media.core.exceptions import ProductNotFoundError
from catalog_media.crud import product_image as image_crud
from catalog_media.models import CarouselEntry, Product, product_occasions
from catalog_media.services.image_store import ImageStore
from catalog_media.services.storage import BlobStorage

logger = logging.getLogger("crud_product")


async def create_product(db: AsyncSession, name: str, is_active: bool = True) -> Product:
    product = Product(name=name, is_active=is_active)
    db.add(product)
    await db.commit()
    return product


async def get_product(db: AsyncSession, product_id: int) -> Optional[Product]:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_product(db: AsyncSession, product_id: int) -> Product:
    product = await get_product(db, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", product_id=product_id)
    return product


async def delete_product(db: AsyncSession, storage: BlobStorage, product_id: int) -> dict:
    """
    Удаляет продукт вместе с изображениями, связями с поводами и записями
    карусели. Файл удаляется только если на него больше никто не ссылается.
    """
    store = ImageStore(db, storage)
    async with store.transaction():
        product = await require_product(db, product_id)
        images = await image_crud.get_product_images(db, product_id)
        released = await store.delete_rows(images)

        await db.execute(
            delete(product_occasions).where(product_occasions.c.product_id == product_id)
        )
        await db.execute(
            delete(CarouselEntry)
            .where(CarouselEntry.product_id == product_id)
            .execution_options(synchronize_session=False)
        )
        await db.delete(product)

    removed = [item.blob_key for item in released if item.blob_removed]
    logger.info(
        "Удалён продукт %d: строк изображений %d, файлов удалено %d",
        product_id,
        len(released),
        len(removed),
    )
    return {
        "product_id": product_id,
        "deleted_images": len(released),
        "removed_blobs": removed,
        "kept_blobs": sorted({item.blob_key for item in released if not item.blob_removed}),
    }
