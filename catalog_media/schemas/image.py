# catalog_media/schemas/image.py
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from catalog_media.models.product_image import SizeClass


class DedupOutcome(str, Enum):
    MISS = "miss"                    # новых байтов не было - сгенерированы и сохранены варианты
    SAME_PRODUCT = "same_product"    # повторная загрузка в тот же продукт - ничего не меняем
    OTHER_PRODUCT = "other_product"  # байты уже есть у другого продукта - переиспользуем файлы


class ImageDescriptor(BaseModel):
    """Описание одного варианта изображения для каталога"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    content_hash: str
    size_class: SizeClass
    image_index: int
    is_primary: bool
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: str = "image/webp"


class IngestResult(BaseModel):
    product_id: int
    content_hash: str
    outcome: DedupOutcome
    image_index: int
    blob_writes: int = 0
    primary_image: Optional[str] = None
    images: List[ImageDescriptor] = Field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.outcome != DedupOutcome.SAME_PRODUCT


class DeleteImageResult(BaseModel):
    product_id: int
    image_index: int
    deleted_rows: int
    removed_blobs: List[str] = Field(default_factory=list)
    primary_image: Optional[str] = None
