"""Task store session management."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine, event, pool
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from dbtransfer.config import get_store_url
from dbtransfer.database.base import Base

logger = logging.getLogger(__name__)


def create_store_engine(url: Optional[str] = None) -> Engine:
    """Create the engine for the task store.

    SQLite stores get a NullPool so the log handler thread and the transfer thread
    never share a connection.

    Args:
        url: SQLAlchemy URL; defaults to ``DBTRANSFER_STORE_URL``
    """
    url = url or get_store_url()
    if url.startswith("sqlite"):
        store_engine = create_engine(
            url,
            poolclass=pool.NullPool,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30}
        )

        @event.listens_for(store_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable foreign keys on every store connection."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return store_engine
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600, echo=False)


engine = create_store_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_store(store_engine: Optional[Engine] = None) -> None:
    """Create the task store tables if they do not exist."""
    # Registers the models on Base.metadata
    from dbtransfer.database import models_db  # noqa: F401

    store_engine = store_engine or engine
    Base.metadata.create_all(bind=store_engine)
    logger.debug(f"Task store initialized at {store_engine.url}")


@contextmanager
def get_session(session_factory=None) -> Generator[Session, None, None]:
    """Session scope: commit on success, roll back on error, always close.

    Yields:
        Database session
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
