# stocksync/models/conflict.py
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Text, TIMESTAMP

from stocksync.database import Base, JSONType
from stocksync.core.enums import ResolutionStrategy
from stocksync.core.utils import utc_now


class Conflict(Base):
    """Divergence between the central value and a store's value. Immutable once resolved."""
    __tablename__ = "conflicts"

    id = Column(Integer, primary_key=True)
    conflict_type = Column(String, nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    # {"available": n}
    central_value = Column(JSONType, nullable=True)
    store_value = Column(JSONType, nullable=True)

    resolution_strategy = Column(String, default=ResolutionStrategy.USE_DATABASE.value, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False, index=True)
    resolved_value = Column(JSONType, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(TIMESTAMP(timezone=False), nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)

    def __repr__(self):
        return (f"<Conflict(id={self.id}, type='{self.conflict_type}', product_id={self.product_id}, "
                f"store_id={self.store_id}, resolved={self.resolved})>")
