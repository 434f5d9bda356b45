from typing import Optional

from pydantic import BaseModel, Field


class CarouselFeedItem(BaseModel):
    """Элемент ленты карусели на главной (только активные записи)"""
    entry_id: int
    product_id: int
    image_id: Optional[int] = None
    image_url: Optional[str] = None
    title: Optional[str] = None
    display_order: int = Field(..., ge=1)
