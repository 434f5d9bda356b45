import asyncio
import logging

from catalog_media.core import database
from catalog_media.core.celery_config import celery_app
from catalog_media.core.config import settings
from catalog_media.core.exceptions import NoImagesError, StorageIOError
from catalog_media.crud import product_image as image_crud
from catalog_media.services.image_service import ImageService
from catalog_media.services.primary import PrimaryImageSelector

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(name)s: %(message)s')
logger = logging.getLogger('celery_tasks')


def _run(coro_factory):
    """Каждая задача выполняется в собственном event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro_factory())
    finally:
        loop.close()
        asyncio.set_event_loop(None)


@celery_app.task(bind=True, max_retries=3)
def ingest_image_url_task(self, product_id: int, url: str, is_primary: bool = False):
    """Скачать изображение по URL и провести его через конвейер."""
    logger.info("Загрузка изображения для продукта %s: %s", product_id, url[:80])

    async def process():
        async with database.AsyncSessionLocal() as db:
            service = ImageService()
            return await service.ingest_from_url(db, product_id, url, is_primary=is_primary)

    try:
        result = _run(process)
    except StorageIOError as e:
        if not e.transient or self.request.retries >= self.max_retries:
            logger.error("Загрузка %s не удалась окончательно: %s", url[:80], e)
            raise
        # Повторяем задачу с экспоненциальной задержкой
        countdown = settings.INGEST_RETRY_COUNTDOWN * (2 ** self.request.retries)
        logger.warning("Временная ошибка хранилища, повтор через %s сек: %s", countdown, e)
        raise self.retry(exc=e, countdown=countdown)

    return {
        "status": "success",
        "product_id": result.product_id,
        "content_hash": result.content_hash,
        "outcome": result.outcome.value,
        "image_index": result.image_index,
        "blob_writes": result.blob_writes,
    }


@celery_app.task
def ensure_primary_task(product_id: int):
    async def process():
        async with database.AsyncSessionLocal() as db:
            try:
                image = await PrimaryImageSelector().ensure_primary(db, product_id)
            except NoImagesError:
                logger.info("У продукта %s нет изображений", product_id)
                return None
            return image.url

    return {"product_id": product_id, "primary_image": _run(process)}


@celery_app.task
def repair_primary_images_task():
    """Назначить главное изображение всем продуктам, где его нет."""

    async def process():
        repaired = []
        async with database.AsyncSessionLocal() as db:
            selector = PrimaryImageSelector()
            for product_id in await image_crud.products_without_primary(db):
                await selector.ensure_primary(db, product_id)
                repaired.append(product_id)
        return repaired

    repaired = _run(process)
    logger.info("Исправлено главных изображений: %d", len(repaired))
    return {"repaired": repaired, "count": len(repaired)}
