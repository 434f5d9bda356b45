# Модель Product: принадлежит каталогу, здесь только поля, нужные конвейеру изображений
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from catalog_media.core.database import Base
from .attributes import product_occasions


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    # Денормализованный URL главного изображения; источник истины - ProductImage.is_primary
    primary_image = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Связи
    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.image_index",
    )
    occasions = relationship("Occasion", secondary=product_occasions, back_populates="products")
    carousel_entries = relationship("CarouselEntry", back_populates="product", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product {self.name}>"
