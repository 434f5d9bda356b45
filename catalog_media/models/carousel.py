from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from catalog_media.core.database import Base


class CarouselEntry(Base):
    __tablename__ = "carousel_entries"
    __table_args__ = (
        Index("ix_carousel_entries_order", "active", "display_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    # Если не задано - показываем главное изображение продукта
    image_id = Column(Integer, ForeignKey("product_images.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    product = relationship("Product", back_populates="carousel_entries")
    image = relationship("ProductImage")

    def __repr__(self):
        return f"<CarouselEntry {self.id} order={self.display_order} active={self.active}>"
