"""Run ledger storage.

This module handles:
- Creating the SQLAlchemy engine for the run ledger
- Tuning SQLite for concurrent architecture runs (WAL, busy timeout)
- Session factories and the transactional session scope
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from nvim_crossbuild.config import get_settings

logger = logging.getLogger(__name__)

# Worker threads wait this long for another run's write to finish
SQLITE_BUSY_TIMEOUT_S = 30


class Base(DeclarativeBase):
    """Declarative base for run ledger models."""

    pass


def sqlite_path(db_url: str) -> Path | None:
    """File backing a SQLite URL, or None for other databases and :memory:."""
    if not db_url.startswith("sqlite"):
        return None
    _, _, path = db_url.partition(":///")
    if not path or path == ":memory:":
        return None
    return Path(path)


def _tune_sqlite(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def get_engine(db_url: str | None = None) -> Engine:
    """Create the ledger engine.

    SQLite databases get their parent directory created, are opened for
    use from worker threads and switch to WAL so that one run's reads do
    not block another run's writes.

    Args:
        db_url: Database URL; the configured db_url when omitted.

    Returns:
        SQLAlchemy Engine.
    """
    if db_url is None:
        db_url = get_settings().db_url

    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False)

    path = sqlite_path(db_url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Run ledger at %s", path)

    engine = create_engine(
        db_url,
        connect_args={
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_S,
        },
        echo=False,
    )
    if path is not None:
        event.listen(engine, "connect", _tune_sqlite)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Session factory bound to engine (the configured ledger by default).

    Objects stay usable after commit; stage records are read back by the
    CLI after the session that wrote them has closed.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Session scope committing on success and rolling back on error.

    Args:
        session_factory: Factory to open the session from; the configured
            ledger when omitted.

    Yields:
        Session for the scope.
    """
    if session_factory is None:
        session_factory = get_session_factory()

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine | None = None) -> None:
    """Create the run and stage tables if they do not exist."""
    # Models register on Base when imported
    from nvim_crossbuild.pipeline import models  # noqa: F401

    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)


__all__ = [
    "SQLITE_BUSY_TIMEOUT_S",
    "Base",
    "create_all_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "sqlite_path",
]
