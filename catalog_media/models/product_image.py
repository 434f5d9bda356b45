# Модель ProductImage: один размер одного логического изображения
import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from catalog_media.core.database import Base


class SizeClass(str, enum.Enum):
    THUMB = "thumb"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def rank(self) -> int:
        return list(SizeClass).index(self)


class ProductImage(Base):
    __tablename__ = "product_images"
    __table_args__ = (
        UniqueConstraint("product_id", "size_class", "image_index", name="uq_product_images_slot"),
        UniqueConstraint("product_id", "content_hash", "size_class", name="uq_product_images_hash"),
        Index("ix_product_images_content_hash", "content_hash"),
        Index("ix_product_images_blob_key", "blob_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False)
    size_class = Column(
        Enum(SizeClass, name="image_size", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    image_index = Column(Integer, nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    url = Column(String(500), nullable=False)
    blob_key = Column(String(255), nullable=False)
    mime_type = Column(String(50), nullable=False, default="image/webp")
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    file_size = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    product = relationship("Product", back_populates="images")

    def __repr__(self):
        return f"<ProductImage {self.product_id}/{self.image_index}/{self.size_class.value}>"
