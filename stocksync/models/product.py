"""
Central product records.

A product is identified by its SKU and is created the first time any store
reports it. Products are never deleted so that sync history keeps its
references.
"""

from sqlalchemy import Column, Integer, String, Boolean, TIMESTAMP, Enum as SAEnum
from sqlalchemy.orm import relationship

from stocksync.database import Base
from stocksync.core.enums import InventoryPolicy
from stocksync.core.utils import utc_now


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String, unique=True, nullable=False, index=True)
    title = Column(String, nullable=True)
    tracks_inventory = Column(Boolean, default=True, nullable=False)
    inventory_policy = Column(
        SAEnum(InventoryPolicy, name="inventorypolicy", native_enum=False),
        default=InventoryPolicy.DENY,
        nullable=False,
    )

    created_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=False), default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    inventory = relationship("InventoryAggregate", back_populates="product", uselist=False)
    mappings = relationship("ProductStoreMapping", back_populates="product")
    location_levels = relationship("InventoryLocation", back_populates="product")

    def __repr__(self):
        return f"<Product(id={self.id}, sku='{self.sku}')>"
