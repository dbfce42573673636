# stocksync/models/inventory.py
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, TIMESTAMP
from sqlalchemy.orm import relationship

from stocksync.database import Base
from stocksync.core.utils import utc_now


class InventoryLocation(Base):
    """Quantities for one product at one store location"""
    __tablename__ = "inventory_locations"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("store_locations.id"), nullable=False, index=True)

    available_quantity = Column(Integer, default=0, nullable=False)
    committed_quantity = Column(Integer, default=0, nullable=False)
    incoming_quantity = Column(Integer, default=0, nullable=False)

    last_adjusted_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)
    last_adjusted_by = Column(String, nullable=True)

    product = relationship("Product", back_populates="location_levels")
    location = relationship("StoreLocation")

    __table_args__ = (
        UniqueConstraint('product_id', 'location_id', name='uq_inventory_product_location'),
    )


class InventoryAggregate(Base):
    """
    Central quantity for a product. Equal to the sum of its InventoryLocation
    rows whenever any exist, otherwise written directly.
    """
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, nullable=False)

    available_quantity = Column(Integer, default=0, nullable=False)
    committed_quantity = Column(Integer, default=0, nullable=False)
    incoming_quantity = Column(Integer, default=0, nullable=False)

    last_adjusted_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)
    last_adjusted_by = Column(String, nullable=True)

    product = relationship("Product", back_populates="inventory")

    def as_dict(self):
        return {
            "available": self.available_quantity,
            "committed": self.committed_quantity,
            "incoming": self.incoming_quantity,
        }

    def __repr__(self):
        return (f"<InventoryAggregate(product_id={self.product_id}, available={self.available_quantity}, "
                f"committed={self.committed_quantity}, incoming={self.incoming_quantity})>")
