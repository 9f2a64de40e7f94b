"""
Pydantic schemas for webhook ingestion and the admin event log
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider"""
    status: str
    event_id: Optional[str] = None


class WebhookEventResponse(BaseModel):
    """Schema for webhook event log entries"""
    id: int
    event_id: str
    event_type: str
    source: str
    status: str
    error_message: Optional[str]
    attempts: int
    created_at: datetime
    processed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ReprocessResponse(BaseModel):
    """Immediate acknowledgement of a reprocess request"""
    message: str
    event: WebhookEventResponse
