#!/usr/bin/env python
"""
Script to run one compensating sweep outside the API process
"""
from reconciliation_service.config import settings
from reconciliation_service.database import SessionLocal
from reconciliation_service.logging_config import configure_logging
from reconciliation_service.publishers.notification_publisher import build_notification_sender
from reconciliation_service.scheduler.compensation import CompensatingScheduler

if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    scheduler = CompensatingScheduler(SessionLocal, build_notification_sender(settings), settings)
    report = scheduler.run()
    raise SystemExit(0 if not report.errors else 1)
