# catalog_media/models/__init__.py

"""
Импорт всех моделей для правильной работы SQLAlchemy и Alembic
"""

# Импорт связующих таблиц
from .attributes import product_occasions

# Импорт моделей
from .occasion import Occasion
from .product import Product
from .product_image import ProductImage, SizeClass
from .carousel import CarouselEntry

__all__ = [
    "Occasion",
    "Product",
    "ProductImage",
    "SizeClass",
    "CarouselEntry",
    "product_occasions",
]
