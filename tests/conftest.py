from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from reconciliation_service.config import Settings
from reconciliation_service.database import build_engine, build_session_factory, init_db
from reconciliation_service.main import create_app
from reconciliation_service.models.order import Order, OrderItem, OrderStatus
from reconciliation_service.models.product import Product
from reconciliation_service.models.webhook_event import WebhookEvent
from reconciliation_service.publishers.notification_publisher import NotificationError
from reconciliation_service.scheduler.compensation import CompensatingScheduler
from reconciliation_service.services.payment_client import (
    PaymentNotFoundError,
    VerifiedPayment,
)
from reconciliation_service.services.reconciliation_engine import ReconciliationEngine


class FakePaymentClient:
    """In-memory stand-in for the provider API"""

    def __init__(self):
        self.payments = {}
        self.fetch_calls = []
        self.refund_calls = []
        self.fetch_error = None
        self.refund_error = None
        self.on_fetch = None

    def set_payment(self, payment_id, status, external_reference, amount=None):
        self.payments[payment_id] = VerifiedPayment(
            payment_id=payment_id,
            status=status,
            external_reference=external_reference,
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            raw={"id": payment_id, "status": status},
        )

    def fetch_payment_status(self, payment_id):
        self.fetch_calls.append(payment_id)
        if self.on_fetch is not None:
            self.on_fetch(payment_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        if payment_id not in self.payments:
            raise PaymentNotFoundError(f"Payment {payment_id} not found at provider")
        return self.payments[payment_id]

    def refund_payment(self, payment_id, idempotency_key):
        self.refund_calls.append((payment_id, idempotency_key))
        if self.refund_error is not None:
            raise self.refund_error
        return {"id": 1, "payment_id": payment_id, "status": "approved"}


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.failing_recipients = set()

    def send(self, recipient, template, data):
        if recipient in self.failing_recipients:
            raise NotificationError("broker unavailable")
        self.sent.append((recipient, template, data))

    def sent_templates(self, template):
        return [s for s in self.sent if s[1] == template]


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SCHEDULER_ENABLED=False,
        METRICS_ENABLED=False,
        LOG_JSON=False,
        MAX_RETRIES=2,
        RETRY_DELAY=0,
        ADMIN_NOTIFICATION_EMAIL="admin@shop.test",
        MERCADOPAGO_API_URL="https://provider.test",
        MERCADOPAGO_ACCESS_TOKEN="test-token",
    )


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reconciliation.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def engine(session_factory, payment_client, notifier, settings):
    return ReconciliationEngine(session_factory, payment_client, notifier, settings)


@pytest.fixture
def compensator(session_factory, notifier, settings):
    return CompensatingScheduler(session_factory, notifier, settings)


@pytest.fixture
def client(settings, session_factory, payment_client, notifier):
    app = create_app(
        settings=settings,
        session_factory=session_factory,
        payment_client=payment_client,
        notifier=notifier,
    )
    return TestClient(app)


@pytest.fixture
def make_product(session_factory):
    def _make(name="Paint", stock=10, price="100.00", product_id=None):
        with session_factory() as db:
            product = Product(id=product_id, name=name, stock=stock, price=Decimal(price))
            db.add(product)
            db.commit()
            return product.id
    return _make


@pytest.fixture
def make_order(session_factory):
    def _make(
        items,
        order_id=None,
        status=OrderStatus.PENDING.value,
        stock_reserved=False,
        created_at=None,
        customer_email="customer@shop.test",
        user_id=7,
        shipping_cost="0.00",
        provider_transaction_id=None,
        approved_at=None,
    ):
        """items: list of (product_id, quantity, unit_price)"""
        order_items = [
            OrderItem(product_id=pid, quantity=qty, unit_price=Decimal(price))
            for pid, qty, price in items
        ]
        total = sum((i.unit_price * i.quantity for i in order_items), Decimal("0")) + Decimal(shipping_cost)
        with session_factory() as db:
            order = Order(
                id=order_id,
                user_id=user_id,
                customer_email=customer_email,
                total_amount=total,
                shipping_cost=Decimal(shipping_cost),
                payment_method="bank_transfer" if status == OrderStatus.PENDING_TRANSFER.value else "provider",
                status=status,
                stock_reserved=stock_reserved,
                provider_transaction_id=provider_transaction_id,
                approved_at=approved_at,
                created_at=created_at or datetime.now(timezone.utc),
            )
            order.items = order_items
            db.add(order)
            db.commit()
            return order.id
    return _make


@pytest.fixture
def load(session_factory):
    class Loader:
        def stock(self, product_id):
            with session_factory() as db:
                return db.get(Product, product_id).stock

        def order(self, order_id):
            with session_factory() as db:
                return db.get(Order, order_id)

        def event(self, event_id):
            with session_factory() as db:
                return db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()

        def events(self):
            with session_factory() as db:
                return db.query(WebhookEvent).all()

    return Loader()


@pytest.fixture
def order_501(make_product, make_order):
    """Order #501: 2 x product A (stock 10) and 1 x product B (stock 5)"""
    product_a = make_product("Product A", stock=10, price="100.00")
    product_b = make_product("Product B", stock=5, price="50.00")
    order_id = make_order(
        [(product_a, 2, "100.00"), (product_b, 1, "50.00")],
        order_id=501,
    )
    return order_id, product_a, product_b

