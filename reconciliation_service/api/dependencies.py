"""
Request-scoped dependencies resolved from app.state
"""
from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from reconciliation_service.config import Settings
from reconciliation_service.services.reconciliation_engine import ReconciliationEngine


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency to get a DB session for a single request."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
