# Вспомогательные таблицы для связей
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Table
from sqlalchemy.sql import func
from catalog_media.core.database import Base

# Связующая таблица для отношения многие-ко-многим между Product и Occasion
product_occasions = Table(
    "product_occasions",
    Base.metadata,
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("occasion_id", Integer, ForeignKey("occasions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
