# stocksync/models/product_mapping.py
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint, TIMESTAMP
from sqlalchemy.orm import relationship

from stocksync.database import Base
from stocksync.core.enums import SyncStatus
from stocksync.core.utils import utc_now


class ProductStoreMapping(Base):
    """
    Links a central product to its product/variant/inventory item in one store.
    Created by catalog discovery or lazily when a webhook references an
    unmapped SKU. At most one mapping per (product, store).
    """
    __tablename__ = "product_store_mappings"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    # Shopify identifiers, stored as GIDs
    shopify_product_id = Column(String, nullable=True, index=True)
    shopify_variant_id = Column(String, nullable=True)
    shopify_inventory_item_id = Column(String, nullable=True, index=True)

    last_synced_at = Column(TIMESTAMP(timezone=False), nullable=True)
    sync_status = Column(String, default=SyncStatus.PENDING.value, nullable=False)

    created_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)

    product = relationship("Product", back_populates="mappings")
    store = relationship("Store", back_populates="mappings")

    __table_args__ = (
        UniqueConstraint('product_id', 'store_id', name='uq_product_store_mapping'),
    )
