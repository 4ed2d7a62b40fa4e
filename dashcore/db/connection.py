"""SQLAlchemy engine & read-only connections.

Single shared engine with connection pooling.  Card queries run through
`readonly_connection`, which sets the transaction to READ ONLY on Postgres
before anything else executes.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from dashcore.core.config import get_settings
from dashcore.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {"sslmode": "require"} if settings.db_ssl else {}
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            connect_args=connect_args,
        )
        logger.info("DB engine created  host=%s  db=%s", settings.postgres_host, settings.postgres_db)
    return _engine


def set_engine(engine: Engine | None) -> None:
    """Swap the shared engine (tests, embedding apps with their own pool)."""
    global _engine
    _engine = engine


def is_postgres(conn: Connection) -> bool:
    return conn.dialect.name == "postgresql"


@contextmanager
def readonly_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection inside a READ ONLY transaction.

    The transaction is rolled back on exit -- card queries never commit.
    """
    engine = engine or get_engine()
    with engine.connect() as conn:
        trans = conn.begin()
        try:
            if is_postgres(conn):
                conn.execute(text("SET TRANSACTION READ ONLY"))
            yield conn
        finally:
            trans.rollback()
