"""
Database engine, session factory and declarative base
"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from reconciliation_service.config import settings

# Base class for declarative ORM models.
Base = declarative_base()


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    # SQLite ignores FOR UPDATE. Taking the write lock at BEGIN serialises
    # writers the same way the row lock does on PostgreSQL.
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> Engine:
    """Create an engine for the given URL"""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _enable_sqlite_immediate_transactions(engine)
        return engine
    return create_engine(database_url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create a configured "Session" class bound to the engine"""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = build_session_factory(engine)


def init_db(bind: Engine = None) -> None:
    """Create database tables if they don't exist"""
    # Models must be imported so they register on Base.metadata
    from reconciliation_service.models import order, product, webhook_event  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
