"""Database connection and session management."""

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from copysim.utils.parsing import _ensure_sync_db_url

from .models import Base

# Global engine instances
_sync_engine: Optional[Engine] = None
_sync_session_factory: Optional[sessionmaker] = None


def _enable_sqlite_wal(dbapi_connection, connection_record) -> None:
    # Lets the report script read while the engine is writing
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_sync_engine(database_url: str = "") -> Engine:
    """Get or create the synchronous database engine."""
    global _sync_engine
    if _sync_engine is None:
        url = _ensure_sync_db_url(database_url)
        _ensure_sqlite_dir(url)
        _sync_engine = create_engine(url, echo=False, future=True)
        if _sync_engine.dialect.name == "sqlite":
            event.listen(_sync_engine, "connect", _enable_sqlite_wal)
    return _sync_engine


def get_sync_session(database_url: str = "") -> Session:
    """Get a synchronous database session."""
    global _sync_session_factory
    if _sync_session_factory is None:
        engine = get_sync_engine(database_url)
        _sync_session_factory = sessionmaker(
            bind=engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _sync_session_factory()


def init_db(database_url: str = "") -> None:
    """Initialize the database by creating all tables."""
    engine = get_sync_engine(database_url)
    Base.metadata.create_all(bind=engine)


def close_db() -> None:
    """Close sync database connections."""
    global _sync_engine, _sync_session_factory
    if _sync_engine is not None:
        _sync_engine.dispose()
    _sync_engine = None
    _sync_session_factory = None


def reset_engines() -> None:
    """Reset engine instances. Useful for testing."""
    close_db()
