"""
SQLAlchemy WebhookEvent model: deduplicated log of provider notifications
"""
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, CheckConstraint
from sqlalchemy.sql import func

from reconciliation_service.database import Base


class WebhookEventStatus(str, Enum):
    RECEIVED = "received"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(Base):
    """One row per distinct provider event id"""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    event_id = Column(String(100), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    source = Column(String(50), nullable=False, default="mercadopago")
    payload = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value, index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('received', 'processing', 'processed', 'failed')",
            name='check_webhook_status_valid'
        ),
    )

    @property
    def is_processed(self):
        return self.status == WebhookEventStatus.PROCESSED.value

    def __repr__(self):
        return f"<WebhookEvent(event_id='{self.event_id}', event_type='{self.event_type}', status='{self.status}')>"
