"""Database connection and session management.

Two databases are involved: the remote document store (shared, may be
unreachable) and the local cache (a SQLite file owned by this process).
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base, CacheBase

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def create_db_engine(url: str) -> Engine:
    """Create SQLAlchemy engine with connection pooling."""
    if url.startswith("sqlite"):
        # Sessions are used from worker threads (asyncio.to_thread)
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Set to True for SQL debugging
    )


def create_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_remote_db(engine: Engine) -> None:
    """Create the document table if missing (alembic handles production)."""
    Base.metadata.create_all(bind=engine)


def init_cache_db(engine: Engine) -> None:
    """Create the local cache table if missing."""
    CacheBase.metadata.create_all(bind=engine)


@contextmanager
def session_scope(factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with session_scope(factory) as db:
            db.query(...)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database_health(factory: SessionFactory) -> bool:
    """Verify database connection is working.

    Returns:
        True if database is healthy, False otherwise.
    """
    try:
        with session_scope(factory) as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


def list_tables(engine: Engine) -> list[str]:
    """List all tables in the database.

    Returns:
        List of table names.
    """
    try:
        return inspect(engine).get_table_names()
    except Exception as e:
        logger.warning(f"Failed to list tables: {e}")
        return []


def dispose_engine(engine: Engine) -> None:
    """Dispose of the engine and all connections.

    Call this during graceful shutdown.
    """
    engine.dispose()
