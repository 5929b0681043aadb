"""Database engine, session factory, and initialization."""

import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from creator_analytics.config import settings
from creator_analytics.models import Base

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enable WAL mode and foreign keys for every new SQLite connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str | None = None):
    """Create a SQLAlchemy engine.

    Args:
        database_url: Override the default database URL (used in tests).

    Returns:
        A SQLAlchemy engine instance.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
        event.listen(engine, "connect", _set_sqlite_pragmas)
        return engine
    return create_engine(url, echo=False)


# Default engine and session factory used by the application
engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(db_engine=None) -> None:
    """Create all tables defined in models.

    Args:
        db_engine: Override the engine (used in tests).
    """
    target = db_engine or engine
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=target)
    logger.info("Database initialized at %s", target.url)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
