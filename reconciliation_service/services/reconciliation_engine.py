"""
Reconciliation Engine - payment verdicts to order, stock and notifications

Two gates keep side effects exactly-once:
1. the webhook event log (an event already `processed` is skipped), and
2. the order row lock: the order status is re-read under SELECT ... FOR UPDATE
   before any stock moves, so concurrent deliveries for the same order
   serialise and the later one becomes a no-op.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from reconciliation_service.config import Settings
from reconciliation_service.exceptions import (
    InvalidPaymentReferenceError,
    OrderNotCancellableError,
    OrderNotFoundError,
    OrderNotPayableError,
    OrderNotShippableError,
    PaymentAmountMismatchError,
    StockIntegrityError,
)
from reconciliation_service.models.order import (
    Order,
    OrderStatus,
    PAID_STATUSES,
    PAYABLE_STATUSES,
)
from reconciliation_service.models.webhook_event import WebhookEvent
from reconciliation_service.publishers.notification_publisher import (
    NEW_ORDER,
    ORDER_CANCELLED,
    ORDER_CONFIRMATION,
    NotificationSender,
)
from reconciliation_service.repositories.order_repository import OrderRepository
from reconciliation_service.repositories.product_repository import ProductRepository
from reconciliation_service.repositories.webhook_event_repository import WebhookEventRepository
from reconciliation_service.services.payment_client import MercadoPagoClient, VerifiedPayment

logger = structlog.get_logger(__name__)

PAYMENT_TOPIC = "payment"

ADMIN_CANCELLABLE_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.PENDING_TRANSFER.value,
    OrderStatus.APPROVED.value,
    OrderStatus.SHIPPED.value,
)
SELF_CANCELLABLE_STATUSES = PAID_STATUSES


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (SQLite) as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def order_notification_data(order: Order) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "status": order.status,
        "total_amount": str(order.total_amount),
        "tracking_number": order.tracking_number,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
            }
            for item in order.items
        ],
    }


@dataclass
class ProcessingOutcome:
    """What happened to one webhook event"""
    event_id: str
    status: str
    action: str
    order_id: Optional[int] = None
    error: Optional[str] = None


class ReconciliationEngine:
    """State machine applying verified payment outcomes to orders"""

    def __init__(
        self,
        session_factory: sessionmaker,
        payment_client: MercadoPagoClient,
        notifier: NotificationSender,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.payment_client = payment_client
        self.notifier = notifier
        self.admin_email = settings.ADMIN_NOTIFICATION_EMAIL
        self.self_cancel_window = timedelta(hours=settings.SELF_CANCEL_WINDOW_HOURS)

    # ------------------------------------------------------------------
    # Webhook processing
    # ------------------------------------------------------------------

    def process_event(self, event_type: str, event_id: str) -> ProcessingOutcome:
        """
        Process one provider notification

        Never raises: every failure ends up as a `failed` webhook event that the
        provider's redelivery or an administrator's reprocess can retry.
        """
        log = logger.bind(event_id=event_id, event_type=event_type)

        # Only payment ids go into the log; ids of other topics share no
        # namespace with them and must not shadow a later payment.
        if event_type != PAYMENT_TOPIC:
            log.info("webhook_topic_ignored")
            return ProcessingOutcome(event_id, "ignored", "ignored_topic")

        try:
            with self.session_factory() as db:
                events = WebhookEventRepository(db)
                recorded = events.record_or_skip(event_id, event_type)
                if not recorded.is_new:
                    log.info("webhook_already_processed")
                    return ProcessingOutcome(event_id, "skipped", "already_processed")

                events.mark_processing(event_id)
        except Exception as e:
            log.error("webhook_log_unavailable", error=str(e), exc_info=True)
            return ProcessingOutcome(event_id, "failed", "error", error=str(e))

        try:
            outcome = self._reconcile(event_id, log)
        except Exception as e:
            retryable = getattr(e, "retryable", isinstance(e, OperationalError))
            message = f"{type(e).__name__}: {e}"
            log.error("webhook_processing_failed", error=message, retryable=retryable, exc_info=True)
            self._record_failure(event_id, message, log)
            return ProcessingOutcome(event_id, "failed", "error", error=message)

        return outcome

    def _reconcile(self, event_id: str, log) -> ProcessingOutcome:
        payment = self.payment_client.fetch_payment_status(event_id)
        order_id = self._resolve_order_id(payment)
        log = log.bind(order_id=order_id, payment_status=payment.status)

        if not payment.is_terminal:
            # The provider reuses the payment id for later status changes, so
            # the event stays open for the next notification.
            log.info("payment_not_final")
            self._with_events(lambda events: events.mark_received(event_id))
            return ProcessingOutcome(event_id, "received", "awaiting_final_status", order_id=order_id)

        if not payment.is_approved:
            log.info("payment_not_approved")
            self._with_events(lambda events: events.mark_processed(event_id))
            return ProcessingOutcome(event_id, "processed", "not_approved", order_id=order_id)

        try:
            order, changed = self._approve(order_id, payment)
        except StockIntegrityError as e:
            log.error(
                "stock_integrity_violation",
                product_id=e.product_id,
                stock=e.stock,
                requested=e.requested,
            )
            raise

        if changed:
            log.info("order_approved")
            self._notify_approval(order, log)
            action = "approved"
        else:
            log.warning("order_already_approved")
            action = "already_approved"

        self._with_events(lambda events: events.mark_processed(event_id))
        return ProcessingOutcome(event_id, "processed", action, order_id=order_id)

    @staticmethod
    def _resolve_order_id(payment: VerifiedPayment) -> int:
        reference = payment.external_reference
        if not reference:
            raise InvalidPaymentReferenceError(
                f"Payment {payment.payment_id} does not have an external_reference"
            )
        try:
            return int(reference)
        except ValueError:
            raise InvalidPaymentReferenceError(
                f"Payment {payment.payment_id} has a non-numeric external_reference {reference!r}"
            )

    def _approve(self, order_id: int, payment: VerifiedPayment) -> Tuple[Order, bool]:
        """Apply an approved payment under the order row lock"""
        with self.session_factory() as db, db.begin():
            order = OrderRepository(db).get_for_update(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)

            if order.status in PAID_STATUSES:
                return order, False

            if order.status not in PAYABLE_STATUSES:
                raise OrderNotPayableError(
                    f"Payment {payment.payment_id} approved for order {order_id} "
                    f"in status '{order.status}'; manual refund required"
                )

            if payment.transaction_amount is not None and (
                payment.transaction_amount.quantize(Decimal("0.01"))
                != Decimal(order.total_amount).quantize(Decimal("0.01"))
            ):
                raise PaymentAmountMismatchError(
                    f"Payment {payment.payment_id} amount {payment.transaction_amount} "
                    f"does not match order {order_id} total {order.total_amount}"
                )

            if not order.stock_reserved:
                ProductRepository(db).decrement_for_items(order.items)
                order.stock_reserved = True

            order.status = OrderStatus.APPROVED.value
            order.approved_at = datetime.now(timezone.utc)
            order.provider_transaction_id = payment.payment_id
        return order, True

    def _notify_approval(self, order: Order, log) -> None:
        data = order_notification_data(order)
        if order.customer_email:
            self._notify(order.customer_email, ORDER_CONFIRMATION, data, log)
        else:
            log.warning("order_without_customer_email")
        self._notify(self.admin_email, NEW_ORDER, data, log)

    def _notify(self, recipient: str, template: str, data: Dict[str, Any], log) -> bool:
        try:
            self.notifier.send(recipient, template, data)
            return True
        except Exception as e:
            log.warning("notification_failed", template=template, error=str(e))
            return False

    def _with_events(self, action: Callable[[WebhookEventRepository], Any]) -> Any:
        with self.session_factory() as db:
            return action(WebhookEventRepository(db))

    def _record_failure(self, event_id: str, message: str, log) -> None:
        try:
            self._with_events(lambda events: events.mark_failed(event_id, message))
        except Exception as e:
            log.error("webhook_failure_not_recorded", error=str(e), exc_info=True)

    def reprocess(self, webhook_id: int, schedule: Callable[..., Any]) -> Optional[WebhookEvent]:
        """
        Reset an event to `received` and hand it to `schedule` for processing

        Returns immediately; `schedule` decides where processing runs (FastAPI
        passes BackgroundTasks.add_task).
        """
        event = self._with_events(lambda events: events.reset(webhook_id))
        if event is None:
            return None

        logger.info("webhook_reprocess_requested", webhook_id=webhook_id, event_id=event.event_id)
        schedule(self.process_event, event.event_type, event.event_id)
        return event

    # ------------------------------------------------------------------
    # Cancellation and fulfilment
    # ------------------------------------------------------------------

    def cancel_order(
        self,
        order_id: int,
        reason: Optional[str] = None,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Cancel an order, refunding first when money was captured

        Passing `user_id` applies the self-service rules: the order must belong
        to the user, be paid, and have been approved within the
        self-cancellation window.

        Raises:
            OrderNotFoundError: If the order does not exist (or is not the user's)
            OrderNotCancellableError: If the order is not eligible
            RefundFailedError: If the provider did not confirm the refund; the
                order is left unchanged
        """
        now = now or datetime.now(timezone.utc)
        log = logger.bind(order_id=order_id, self_service=user_id is not None)

        with self.session_factory() as db, db.begin():
            order = OrderRepository(db).get_for_update(order_id)
            if order is None or (user_id is not None and order.user_id != user_id):
                raise OrderNotFoundError(order_id)

            self._check_cancellable(order, user_id is not None, now)

            if order.provider_transaction_id:
                # Raises RefundFailedError; the transaction rolls back untouched
                self.payment_client.refund_payment(
                    order.provider_transaction_id,
                    idempotency_key=f"refund-order-{order.id}",
                )

            if order.stock_reserved:
                ProductRepository(db).restore_for_items(order.items)
                order.stock_reserved = False

            previous_status = order.status
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = now

        log.info("order_cancelled", previous_status=previous_status, reason=reason)
        if order.customer_email:
            data = order_notification_data(order)
            data["reason"] = reason
            self._notify(order.customer_email, ORDER_CANCELLED, data, log)
        return order

    def _check_cancellable(self, order: Order, self_service: bool, now: datetime) -> None:
        if not self_service:
            if order.status not in ADMIN_CANCELLABLE_STATUSES:
                raise OrderNotCancellableError(
                    f"Order {order.id} in status '{order.status}' cannot be cancelled"
                )
            return

        if order.status not in SELF_CANCELLABLE_STATUSES:
            raise OrderNotCancellableError(
                f"Order {order.id} in status '{order.status}' cannot be cancelled by the customer"
            )
        approved_at = as_utc(order.approved_at)
        if approved_at is None or as_utc(now) - approved_at > self.self_cancel_window:
            raise OrderNotCancellableError(
                f"Order {order.id} is outside the cancellation window"
            )

    def mark_shipped(self, order_id: int, tracking_number: str) -> Order:
        """Move an approved order to shipped and record its tracking number"""
        with self.session_factory() as db, db.begin():
            order = OrderRepository(db).get_for_update(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.status != OrderStatus.APPROVED.value:
                raise OrderNotShippableError(
                    f"Order {order_id} in status '{order.status}' cannot be shipped"
                )
            order.status = OrderStatus.SHIPPED.value
            order.tracking_number = tracking_number

        logger.info("order_shipped", order_id=order_id, tracking_number=tracking_number)
        return order
