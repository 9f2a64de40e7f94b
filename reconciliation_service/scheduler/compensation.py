"""
Compensating sweeps for bank-transfer orders that are never paid

Sweep A cancels `pending_transfer` orders older than the expiry window and
returns their reserved stock. Sweep B reminds customers once, when the order
is between REMINDER_AFTER_HOURS and REMINDER_AFTER_HOURS + REMINDER_WINDOW_HOURS
old. Per-order outcomes are returned in a SweepReport instead of being
swallowed.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog
from sqlalchemy.orm import sessionmaker

from reconciliation_service.config import Settings
from reconciliation_service.models.order import Order, OrderStatus
from reconciliation_service.publishers.notification_publisher import (
    ORDER_CANCELLED,
    PAYMENT_REMINDER,
    NotificationSender,
)
from reconciliation_service.repositories.order_repository import OrderRepository
from reconciliation_service.repositories.product_repository import ProductRepository
from reconciliation_service.services.reconciliation_engine import order_notification_data

logger = structlog.get_logger(__name__)

EXPIRE = "expire"
REMIND = "remind"


@dataclass
class ItemResult:
    order_id: int
    action: str
    succeeded: bool
    error: Optional[str] = None


@dataclass
class SweepReport:
    """Outcome of one scheduler tick"""
    ran_at: datetime
    expired: List[ItemResult] = field(default_factory=list)
    reminded: List[ItemResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def failures(self) -> List[ItemResult]:
        return [r for r in self.expired + self.reminded if not r.succeeded]

    @property
    def ok(self) -> bool:
        return not self.errors and not self.failures


class CompensatingScheduler:
    """Expiry and reminder sweeps over the order ledger"""

    def __init__(self, session_factory: sessionmaker, notifier: NotificationSender, settings: Settings):
        self.session_factory = session_factory
        self.notifier = notifier
        self.expiry = timedelta(hours=settings.TRANSFER_EXPIRY_HOURS)
        self.reminder_after = timedelta(hours=settings.REMINDER_AFTER_HOURS)
        self.reminder_window = timedelta(hours=settings.REMINDER_WINDOW_HOURS)

    def run(self, now: Optional[datetime] = None) -> SweepReport:
        """Run both sweeps for one tick"""
        now = now or datetime.now(timezone.utc)
        report = SweepReport(ran_at=now)

        try:
            report.expired = self.expire_stale_transfers(now)
        except Exception as e:
            logger.error("expiry_sweep_failed", error=str(e), exc_info=True)
            report.errors.append(f"expiry sweep failed: {e}")

        try:
            report.reminded = self.send_payment_reminders(now)
        except Exception as e:
            logger.error("reminder_sweep_failed", error=str(e), exc_info=True)
            report.errors.append(f"reminder sweep failed: {e}")

        logger.info(
            "scheduler_tick_finished",
            expired=len(report.expired),
            reminded=len(report.reminded),
            failures=len(report.failures),
            errors=len(report.errors),
        )
        return report

    def expire_stale_transfers(self, now: datetime) -> List[ItemResult]:
        """
        Cancel unpaid transfer orders older than the expiry window

        All mutations share one transaction; each order is compensated inside
        its own savepoint so a failing order only rolls back itself. Cancellation
        notifications go out after the commit.
        """
        cutoff = now - self.expiry
        results: List[ItemResult] = []
        cancelled: List[Order] = []

        with self.session_factory() as db, db.begin():
            orders = OrderRepository(db)
            products = ProductRepository(db)

            for order in orders.get_stale_transfers_for_update(cutoff):
                order_id = order.id
                try:
                    with db.begin_nested():
                        if order.stock_reserved:
                            products.restore_for_items(order.items)
                            order.stock_reserved = False
                        order.status = OrderStatus.CANCELLED.value
                        order.cancelled_at = now
                except Exception as e:
                    logger.error("order_expiry_failed", order_id=order_id, error=str(e))
                    results.append(ItemResult(order_id, EXPIRE, False, str(e)))
                    continue
                cancelled.append(order)

        for order in cancelled:
            logger.info("order_expired", order_id=order.id)
            results.append(self._notify(order, ORDER_CANCELLED, EXPIRE))
        return results

    def send_payment_reminders(self, now: datetime) -> List[ItemResult]:
        """Remind customers whose transfer order entered the reminder window"""
        window_end = now - self.reminder_after
        window_start = window_end - self.reminder_window

        with self.session_factory() as db:
            orders = OrderRepository(db).get_transfers_created_between(window_start, window_end)

        return [self._notify(order, PAYMENT_REMINDER, REMIND) for order in orders]

    def _notify(self, order: Order, template: str, action: str) -> ItemResult:
        if not order.customer_email:
            logger.warning("order_without_customer_email", order_id=order.id, template=template)
            return ItemResult(order.id, action, False, "order has no customer email")
        try:
            self.notifier.send(order.customer_email, template, order_notification_data(order))
        except Exception as e:
            logger.error("notification_failed", order_id=order.id, template=template, error=str(e))
            return ItemResult(order.id, action, False, f"notification failed: {e}")
        return ItemResult(order.id, action, True)
