"""
Central SQLAlchemy models and session utilities.

These definitions power both Alembic migrations and runtime ORM queries.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import Config

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


class Annotation(Base):
    """
    Annotations table, one row per note.

    The anchor is flattened into three nullable columns; a NULL anchor_text
    marks an article-level annotation. Schema supports both SQLite (dev)
    and PostgreSQL (prod).
    """
    __tablename__ = "annotations"

    # Core fields
    id = Column(String(64), primary_key=True)
    numeric_id = Column(Integer, nullable=True)
    document_id = Column(String(255), nullable=False)
    document_path = Column(Text, nullable=False)

    # Anchor
    anchor_text = Column(Text, nullable=True)
    anchor_context = Column(Text, nullable=True)
    anchor_text_position = Column(Integer, nullable=True)

    content = Column(Text, nullable=False, default="")

    # Tags - stored as a JSON string, order preserved
    tags = Column(Text, nullable=True)

    # ISO-8601 string so the index orders by creation time
    date_created = Column(String(40), nullable=False)

    # Indexes
    __table_args__ = (
        Index("idx_annotations_document_id", "document_id"),
        Index("idx_annotations_document_path", "document_path"),
        Index("idx_annotations_date_created", "date_created"),
    )


def get_database_url() -> str:
    """
    Get database URL from environment, defaulting to SQLite.

    Returns:
        Database connection string
    """
    database_url = os.getenv("DATABASE_URL")

    if database_url:
        return database_url

    flask_env = os.getenv("FLASK_ENV", "development")
    if flask_env == "production":
        # In production, we must have DATABASE_URL. Do not fallback to SQLite.
        raise ValueError("DATABASE_URL environment variable is not set in production environment!")

    # SQLite (development)
    db_path = Path(__file__).parent.parent / ".annotations.db"
    logger.warning("Using SQLite database at %s", db_path)
    return f"sqlite:///{db_path}"


def get_engine():
    """Get (and lazily create) the shared SQLAlchemy engine."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url()
    return _engine


def get_session_factory() -> sessionmaker:
    """Return the configured session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = make_session_factory(get_engine())
    return _SessionFactory


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def create_engine_for_url(
    database_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Engine:
    """Build a SQLAlchemy engine for the given URL (or default environment).

    ``timeout`` bounds how long a connection waits on a locked database or
    an exhausted pool, so a stuck transaction fails instead of hanging.
    """
    url = database_url or get_database_url()
    timeout = timeout if timeout is not None else Config.STORE_TIMEOUT_SECONDS

    kwargs = {"future": True, "echo": False, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": timeout}
    else:
        kwargs["pool_timeout"] = timeout

    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragmas)

    return engine


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """
    Apply SQLite pragmas for better consistency (WAL, foreign keys).
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
