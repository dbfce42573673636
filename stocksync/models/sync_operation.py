# stocksync/models/sync_operation.py
from sqlalchemy import Column, Integer, String, ForeignKey, Text, TIMESTAMP

from stocksync.database import Base, JSONType
from stocksync.core.enums import SyncStatus
from stocksync.core.utils import utc_now


class SyncOperation(Base):
    """
    Append-only audit log of every inventory hop, inbound or outbound.
    Only the status (and its timestamps / error) changes after insert.
    Echo suppression and conflict detection read from this table.
    """
    __tablename__ = "sync_operations"

    id = Column(Integer, primary_key=True, index=True)

    operation_type = Column(String, nullable=False, index=True)
    direction = Column(String, nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True, index=True)

    status = Column(String, default=SyncStatus.PENDING.value, nullable=False, index=True)

    # e.g. {"available": 12, "committed": 3}
    previous_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)

    error_message = Column(Text, nullable=True)
    triggered_by = Column(String, nullable=True)

    created_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False)
    started_at = Column(TIMESTAMP(timezone=False), nullable=True)
    completed_at = Column(TIMESTAMP(timezone=False), nullable=True, index=True)

    def __repr__(self):
        return (f"<SyncOperation(id={self.id}, type='{self.operation_type}', direction='{self.direction}', "
                f"product_id={self.product_id}, store_id={self.store_id}, status='{self.status}')>")
