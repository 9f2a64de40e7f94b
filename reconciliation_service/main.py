"""
FastAPI Application Entry Point - Reconciliation Service
"""
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import sessionmaker

from reconciliation_service.api import health, orders, webhooks
from reconciliation_service.config import Settings, settings as default_settings
from reconciliation_service.database import init_db
from reconciliation_service.logging_config import configure_logging
from reconciliation_service.publishers.notification_publisher import (
    NotificationSender,
    build_notification_sender,
)
from reconciliation_service.scheduler.compensation import CompensatingScheduler
from reconciliation_service.scheduler.tasks import ScheduledTask
from reconciliation_service.services.payment_client import MercadoPagoClient
from reconciliation_service.services.reconciliation_engine import ReconciliationEngine

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    payment_client: Optional[MercadoPagoClient] = None,
    notifier: Optional[NotificationSender] = None,
) -> FastAPI:
    """
    Build the application with explicitly constructed collaborators

    Anything not passed in is built from settings, so tests can swap in fakes
    for the database, the payment provider and the notification sender.
    """
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    if session_factory is None:
        from reconciliation_service.database import SessionLocal
        session_factory = SessionLocal
    payment_client = payment_client or MercadoPagoClient(settings)
    notifier = notifier or build_notification_sender(settings)

    engine = ReconciliationEngine(session_factory, payment_client, notifier, settings)
    compensator = CompensatingScheduler(session_factory, notifier, settings)
    sweep_task = ScheduledTask("compensating-sweep", settings.SCHEDULER_INTERVAL_SECONDS, compensator.run)

    app = FastAPI(
        title="Reconciliation Service",
        description="Payment notification reconciliation for orders and inventory",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.engine = engine
    app.state.compensator = compensator
    app.state.sweep_task = sweep_task

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(webhooks.router)
    app.include_router(orders.router)

    # Prometheus metrics
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def startup_event():
        """Initialize database and start the compensating scheduler"""
        logger.info("service_starting", service=settings.SERVICE_NAME)
        init_db(session_factory.kw["bind"])
        if settings.SCHEDULER_ENABLED:
            sweep_task.start()
        logger.info("service_started", service=settings.SERVICE_NAME, port=settings.SERVICE_PORT)

    @app.on_event("shutdown")
    def shutdown_event():
        """Cleanup on shutdown"""
        logger.info("service_stopping", service=settings.SERVICE_NAME)
        sweep_task.stop()

    return app
