"""
Payment provider webhook and admin event-log endpoints
"""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reconciliation_service.api.dependencies import get_db, get_engine
from reconciliation_service.repositories.webhook_event_repository import WebhookEventRepository
from reconciliation_service.schemas.webhook import (
    ReprocessResponse,
    WebhookAck,
    WebhookEventResponse,
)
from reconciliation_service.services.reconciliation_engine import PAYMENT_TOPIC, ReconciliationEngine

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhooks"])


def extract_pointer(
    query: Dict[str, Optional[str]],
    payload: Optional[Dict[str, Any]],
) -> Optional[Tuple[str, str]]:
    """
    Find (topic, event id) in the notification

    Query parameters win; the JSON body is the fallback. Only the pointer is
    read, never a status or amount.
    """
    topic = query.get("topic") or query.get("type")
    event_id = query.get("id") or query.get("data.id")

    if payload:
        if not topic:
            topic = payload.get("topic") or payload.get("type")
        if not event_id:
            data = payload.get("data")
            event_id = payload.get("id") or (data.get("id") if isinstance(data, dict) else None)

    if not topic or not event_id or topic == "undefined" or event_id == "undefined":
        return None
    return str(topic), str(event_id)


@router.post("/payments/notifications", response_model=WebhookAck, summary="Payment provider webhook")
def receive_notification(
    background_tasks: BackgroundTasks,
    topic: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None, alias="type"),
    event_id: Optional[str] = Query(None, alias="id"),
    data_id: Optional[str] = Query(None, alias="data.id"),
    payload: Optional[Dict[str, Any]] = Body(None),
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Receive a provider notification

    The notification is recorded durably before it is acknowledged; processing
    then continues in the background. Returns 503 when the event log cannot be
    written so the provider retries.
    """
    query = {"topic": topic, "type": event_type, "id": event_id, "data.id": data_id}
    pointer = extract_pointer(query, payload)
    if pointer is None:
        logger.warning("webhook_without_pointer", query=query)
        return WebhookAck(status="ignored")

    topic, event_id = pointer
    if topic != PAYMENT_TOPIC:
        logger.info("webhook_topic_ignored", event_id=event_id, event_type=topic)
        return WebhookAck(status="ignored", event_id=event_id)

    stored_payload = payload if payload else {k: v for k, v in query.items() if v is not None}

    try:
        recorded = WebhookEventRepository(db).record_or_skip(event_id, topic, stored_payload)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("webhook_not_recorded", event_id=event_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook event could not be recorded"
        )

    if not recorded.is_new:
        logger.info("webhook_duplicate", event_id=event_id)
        return WebhookAck(status="already_processed", event_id=event_id)

    logger.info("webhook_recorded", event_id=event_id, event_type=topic)
    background_tasks.add_task(engine.process_event, topic, event_id)
    return WebhookAck(status="accepted", event_id=event_id)


@router.get(
    "/admin/webhook-events",
    response_model=List[WebhookEventResponse],
    summary="List recent webhook events"
)
def list_webhook_events(
    limit: int = Query(100, ge=1, le=500, description="Maximum number of events to return"),
    db: Session = Depends(get_db),
):
    """
    Most recent webhook events with status and error message

    - **limit**: Maximum number of events to return (default: 100, max: 500)
    """
    return WebhookEventRepository(db).list(limit=limit)


@router.post(
    "/admin/webhook-events/{webhook_id}/reprocess",
    response_model=ReprocessResponse,
    summary="Reprocess a webhook event"
)
def reprocess_webhook_event(
    webhook_id: int,
    background_tasks: BackgroundTasks,
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Reset a webhook event to `received` and process it again in the background

    - **webhook_id**: Webhook event row ID
    """
    event = engine.reprocess(webhook_id, background_tasks.add_task)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Webhook event with id={webhook_id} not found"
        )
    return ReprocessResponse(
        message="Webhook event queued for reprocessing",
        event=WebhookEventResponse.model_validate(event),
    )
