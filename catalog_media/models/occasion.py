from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship
from catalog_media.core.database import Base
from .attributes import product_occasions


class Occasion(Base):
    __tablename__ = "occasions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)

    products = relationship("Product", secondary=product_occasions, back_populates="occasions")

    def __repr__(self):
        return f"<Occasion {self.name}>"
