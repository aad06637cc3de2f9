"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from app.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": settings.database_pool_size,
    "max_overflow": settings.database_max_overflow,
    # Fail fast when the pool is exhausted rather than queueing requests.
    "pool_timeout": 5,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}

# PostgreSQL: bound row-lock waits so a stuck ledger lock surfaces as a
# retryable error instead of hanging the request.
_POSTGRES_CONNECT_ARGS: dict[str, Any] = {
    "connect_timeout": 5,
    "options": "-c lock_timeout=10000 -c statement_timeout=15000",
    "application_name": "booking_engine",
}

# SQLite: allow cross-thread use and wait on the writer lock instead of failing.
_SQLITE_CONNECT_ARGS: dict[str, Any] = {"check_same_thread": False, "timeout": 30}


def build_engine(db_url: str, **overrides: Any) -> Engine:
    """Create an engine tuned for the dialect in ``db_url``."""
    if db_url.lower().startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": dict(_SQLITE_CONNECT_ARGS)}
    else:
        kwargs = dict(_DEFAULT_POOL_KWARGS)
        kwargs["poolclass"] = QueuePool
        kwargs["connect_args"] = dict(_POSTGRES_CONNECT_ARGS)
    kwargs["echo"] = settings.database_echo
    kwargs.update(overrides)
    new_engine = create_engine(db_url, **kwargs)

    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _sqlite_on_connect)
    event.listen(new_engine, "connect", receive_connect)
    return new_engine


def _sqlite_on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


db_url = settings.get_database_url()
engine: Engine = build_engine(db_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def init_db(bind: Engine | None = None) -> None:
    """Create all tables on ``bind`` (defaults to the application engine)."""
    import app.models  # noqa: F401  - registers mappers on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
