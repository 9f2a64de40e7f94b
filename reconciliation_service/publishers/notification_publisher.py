"""
Notification dispatch

Email delivery lives in the notification service. This side only hands it a
`send(recipient, template, data)` request over RabbitMQ.
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Dict, Protocol

import pika
import structlog

from reconciliation_service.config import Settings

logger = structlog.get_logger(__name__)


ORDER_CONFIRMATION = "order_confirmation"
NEW_ORDER = "new_order"
ORDER_CANCELLED = "order_cancelled"
PAYMENT_REMINDER = "payment_reminder"


class NotificationError(Exception):
    """Notification request could not be handed off"""
    pass


class NotificationSender(Protocol):
    def send(self, recipient: str, template: str, data: Dict) -> None:
        ...


class RabbitMQNotificationPublisher:
    """Publisher for NotificationRequested events"""

    def __init__(self, settings: Settings):
        self.rabbitmq_url = settings.RABBITMQ_URL
        self.exchange = settings.RABBITMQ_EXCHANGE
        self.source = settings.SERVICE_NAME

    def send(self, recipient: str, template: str, data: Dict) -> None:
        """
        Publish a NotificationRequested event

        Args:
            recipient: Email address of the recipient
            template: Template name, e.g. "order_confirmation"
            data: Template variables

        Raises:
            NotificationError: If the broker did not confirm the message
        """
        event = {
            "event_type": "NotificationRequested",
            "event_id": str(uuid.uuid4()),
            "event_version": "1.0",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": self.source,
            "data": {
                "recipient": recipient,
                "template": template,
                "data": data,
            },
        }

        try:
            connection = pika.BlockingConnection(
                pika.URLParameters(self.rabbitmq_url)
            )
            try:
                channel = connection.channel()
                channel.exchange_declare(
                    exchange=self.exchange,
                    exchange_type='topic',
                    durable=True
                )
                channel.confirm_delivery()
                channel.basic_publish(
                    exchange=self.exchange,
                    routing_key=f"notification.{template}",
                    body=json.dumps(event, default=str),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Persistent message
                        content_type='application/json',
                        correlation_id=event["event_id"]
                    ),
                    mandatory=True
                )
            finally:
                connection.close()
        except pika.exceptions.UnroutableError as e:
            raise NotificationError(f"Notification {template} could not be routed to any queue") from e
        except pika.exceptions.AMQPError as e:
            raise NotificationError(f"Error publishing notification {template}: {e}") from e

        logger.info("notification_published", template=template, event_id=event["event_id"])


class ConsoleNotificationSender:
    """Logs notifications instead of publishing them (development mode)"""

    def send(self, recipient: str, template: str, data: Dict) -> None:
        logger.info("notification_console", recipient=recipient, template=template, data=data)


def build_notification_sender(settings: Settings) -> NotificationSender:
    if settings.NOTIFICATION_BACKEND == "console":
        return ConsoleNotificationSender()
    return RabbitMQNotificationPublisher(settings)
