from celery import Celery
from catalog_media.core.config import settings

celery_app = Celery(
    "catalog_media",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["catalog_media.worker.tasks"],
)

celery_app.conf.task_routes = {
    "catalog_media.worker.tasks.*": {"queue": "images"},
}
celery_app.conf.task_acks_late = True
