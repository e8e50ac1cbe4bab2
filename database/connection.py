"""
Hospital Wait Monitor - Database Connection

Manages SQLAlchemy engine and session lifecycle.
Provides connection pooling, health checks, and transaction management.

Server databases get a QueuePool sized from settings. SQLite URLs get the
pool SQLite needs (StaticPool for in-memory databases so every session sees
the same data).

Usage:
    from database.connection import create_db_engine, get_session, get_session_factory, init_database

    engine = create_db_engine("sqlite://")
    init_database(engine)

    with get_session(get_session_factory(engine)) as session:
        rows = session.query(HospitalMetricRow).all()
"""

import logging
import time
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from config.settings import Settings, get_settings
from database.models import Base


logger = logging.getLogger(__name__)


# =============================================================================
# Engine Management
# =============================================================================

def create_db_engine(
    database_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Engine:
    """
    Create a new engine for ``database_url`` (defaults to settings).

    Args:
        database_url: SQLAlchemy URL override
        settings: Settings providing pool options

    Returns:
        SQLAlchemy Engine instance
    """
    settings = settings or get_settings()
    url = database_url or settings.database_url

    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            options["poolclass"] = StaticPool
        return create_engine(url, echo=settings.database_echo, **options)

    logger.info(
        "Creating database engine",
        extra={
            "pool_size": settings.database_pool_size,
            "max_overflow": settings.database_max_overflow,
        },
    )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_pre_ping=True,  # Verify connections before use
        echo=settings.database_echo,
    )


def get_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to ``engine``. Sessions keep loaded rows usable after commit."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# =============================================================================
# Session Management
# =============================================================================

@contextmanager
def get_session(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Get a database session in a context manager.

    Rolls back on exception. The session is closed after the context exits;
    callers commit explicitly.

    Yields:
        SQLAlchemy Session instance
    """
    session = factory()

    try:
        yield session
    except Exception:
        logger.error("Database session error, rolling back")
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# Initialization
# =============================================================================

def init_database(engine: Engine) -> bool:
    """
    Verify connectivity and create missing tables.

    Returns:
        True if initialization successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

        logger.info("Database connection verified")
        Base.metadata.create_all(engine)
        return True

    except Exception as e:
        logger.error(
            "Database initialization failed",
            extra={"error": str(e)},
        )
        return False


def check_database_health(engine: Engine) -> dict:
    """
    Check database health and return status information.

    Returns:
        Dictionary with connected, response_time_ms, version and error keys
    """
    result = {
        "healthy": False,
        "connected": False,
        "response_time_ms": None,
        "version": None,
        "error": None,
    }

    started = time.monotonic()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        result["connected"] = True
        result["healthy"] = True
        info = engine.dialect.server_version_info
        result["version"] = (
            f"{engine.dialect.name} " + ".".join(str(part) for part in info)
            if info else engine.dialect.name
        )

    except Exception as e:
        result["error"] = str(e)
        logger.error("Database health check failed", extra={"error": str(e)})

    result["response_time_ms"] = round((time.monotonic() - started) * 1000, 2)
    return result


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "create_db_engine",
    "get_session",
    "get_session_factory",
    "init_database",
    "check_database_health",
]
