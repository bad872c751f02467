"""
Database engine and session management for the crypto ledger.
Uses SQLModel with SQLite for persistent storage.
Features Write-Ahead Logging (WAL) mode for improved concurrency and a
unit-of-work helper so multi-row writes commit or roll back together.
"""

from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from config import get_settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Get or create the database engine with SQLite pragmas installed."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs = {"echo": settings.db_echo}
        if settings.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}  # Allow use across threads
            if settings.is_in_memory:
                # One shared connection, otherwise every checkout sees an empty database
                kwargs["poolclass"] = StaticPool
        _engine = create_engine(settings.database_url, **kwargs)
        if settings.is_sqlite:
            _install_sqlite_pragmas(_engine, wal=not settings.is_in_memory)
    return _engine


def _install_sqlite_pragmas(engine: Engine, wal: bool) -> None:
    """
    Configure every SQLite connection for this engine.

    pysqlite's implicit transaction handling is switched off and BEGIN is
    emitted by SQLAlchemy instead, so SAVEPOINTs (used by find-or-create)
    behave correctly.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            # Set busy timeout to 5 seconds to handle concurrent access
            cursor.execute("PRAGMA busy_timeout=5000")
            if wal:
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    if wal:
        logger.info("SQLite WAL mode enabled for concurrent access")


def reset_engine() -> None:
    """Dispose of the current engine so the next call rebuilds it from settings."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def init_db() -> None:
    """Initialize the database and create all tables."""
    from models import CryptoAsset, CryptoTransaction, P2PTransaction, MarketRate, PortfolioSnapshot  # noqa: F401

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Database initialized")


def get_session() -> Session:
    """Get a new database session."""
    return Session(get_engine(), expire_on_commit=False)


@contextmanager
def session_scope(session: Optional[Session] = None) -> Iterator[Session]:
    """
    Provide a unit of work around a series of operations.

    When an existing session is passed in, it is yielded untouched and the
    caller owns commit/rollback. Otherwise a new session is opened, committed
    on success and rolled back on any exception.
    """
    if session is not None:
        yield session
        return

    with get_session() as sess:
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
