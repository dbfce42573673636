# stocksync/models/webhook.py
from sqlalchemy import Column, Integer, String, Boolean, Text, TIMESTAMP

from stocksync.database import Base, JSONType
from stocksync.core.utils import utc_now


class WebhookEvent(Base):
    """
    Idempotency ledger entry, one row per externally assigned webhook id.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    topic = Column(String, nullable=False)
    shop_domain = Column(String, nullable=False, index=True)
    payload = Column(JSONType, nullable=True)

    processed = Column(Boolean, default=False, nullable=False, index=True)
    processed_at = Column(TIMESTAMP(timezone=False), nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    error_message = Column(Text, nullable=True)

    received_at = Column(TIMESTAMP(timezone=False), default=utc_now, nullable=False, index=True)

    def __repr__(self):
        return (f"<WebhookEvent(event_id='{self.event_id}', topic='{self.topic}', "
                f"processed={self.processed}, retry_count={self.retry_count})>")
