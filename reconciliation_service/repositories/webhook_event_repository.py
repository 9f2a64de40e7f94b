"""
Webhook Event Repository - deduplicated notification log

Every write commits immediately: a notification is only acknowledged to the
provider once its row is durable.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reconciliation_service.models.webhook_event import WebhookEvent, WebhookEventStatus


@dataclass
class RecordResult:
    """Outcome of recording an inbound notification"""
    is_new: bool
    event: WebhookEvent


class WebhookEventRepository:
    """Repository for the webhook event log"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, webhook_id: int) -> Optional[WebhookEvent]:
        return self.db.query(WebhookEvent).filter(WebhookEvent.id == webhook_id).first()

    def get_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        return self.db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()

    def list(self, limit: int = 100) -> List[WebhookEvent]:
        """Most recent events first"""
        return self.db.query(WebhookEvent).order_by(
            desc(WebhookEvent.created_at), desc(WebhookEvent.id)
        ).limit(limit).all()

    def record_or_skip(self, event_id: str, event_type: str, payload: Optional[dict] = None) -> RecordResult:
        """
        Record a notification unless it was already processed

        Unseen ids are inserted as `received`. A row that is `processed` yields
        is_new=False and the caller must not reprocess it. Rows in any other
        status are retryable and yield is_new=True.
        """
        event = self.get_by_event_id(event_id)
        if event is None:
            event = WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                payload=payload,
                status=WebhookEventStatus.RECEIVED.value,
            )
            self.db.add(event)
            try:
                self.db.commit()
                return RecordResult(is_new=True, event=event)
            except IntegrityError:
                # A concurrent delivery inserted the same id first
                self.db.rollback()
                event = self.get_by_event_id(event_id)
                if event is None:
                    raise

        self.db.commit()
        return RecordResult(is_new=not event.is_processed, event=event)

    def _update(self, event_id: str, **fields) -> Optional[WebhookEvent]:
        event = self.get_by_event_id(event_id)
        if event is None:
            self.db.rollback()
            return None
        for field, value in fields.items():
            setattr(event, field, value)
        self.db.commit()
        return event

    def mark_processing(self, event_id: str) -> Optional[WebhookEvent]:
        event = self.get_by_event_id(event_id)
        if event is None:
            self.db.rollback()
            return None
        event.status = WebhookEventStatus.PROCESSING.value
        event.attempts = (event.attempts or 0) + 1
        self.db.commit()
        return event

    def mark_processed(self, event_id: str) -> Optional[WebhookEvent]:
        return self._update(
            event_id,
            status=WebhookEventStatus.PROCESSED.value,
            error_message=None,
            processed_at=datetime.now(timezone.utc),
        )

    def mark_failed(self, event_id: str, error_message: str) -> Optional[WebhookEvent]:
        return self._update(
            event_id,
            status=WebhookEventStatus.FAILED.value,
            error_message=error_message,
        )

    def mark_received(self, event_id: str) -> Optional[WebhookEvent]:
        return self._update(event_id, status=WebhookEventStatus.RECEIVED.value)

    def reset(self, webhook_id: int) -> Optional[WebhookEvent]:
        """Administrative reset so the event can be processed again"""
        event = self.get_by_id(webhook_id)
        if event is None:
            self.db.rollback()
            return None
        event.status = WebhookEventStatus.RECEIVED.value
        event.error_message = None
        self.db.commit()
        return event
