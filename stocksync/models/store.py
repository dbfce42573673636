# stocksync/models/store.py
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, UniqueConstraint, TIMESTAMP
from sqlalchemy.orm import relationship

from stocksync.database import Base
from stocksync.core.utils import utc_now


class Store(Base):
    """
    One connected storefront (a replica of the central inventory).
    Inactive or sync-disabled stores still have their own events recorded,
    they are only skipped as propagation targets.
    """
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True)
    shop_domain = Column(String, unique=True, nullable=False, index=True)
    access_token = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    sync_enabled = Column(Boolean, default=True, nullable=False)

    installed_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)
    uninstalled_at = Column(TIMESTAMP(timezone=False), nullable=True)

    locations = relationship("StoreLocation", back_populates="store")
    mappings = relationship("ProductStoreMapping", back_populates="store")

    @property
    def accepts_sync(self) -> bool:
        return bool(self.is_active and self.sync_enabled)

    def __repr__(self):
        return f"<Store(id={self.id}, shop_domain='{self.shop_domain}', active={self.is_active})>"


class StoreLocation(Base):
    """A fulfilment location belonging to a store, keyed by its Shopify GID"""
    __tablename__ = "store_locations"

    id = Column(Integer, primary_key=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    shopify_location_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)

    store = relationship("Store", back_populates="locations")

    __table_args__ = (
        UniqueConstraint('store_id', 'shopify_location_id', name='uq_store_location'),
    )
