"""
Hospital Wait Monitor - Database Package

Persistence for scraped wait time records.

Modules:
    models: SQLAlchemy ORM model for hospital metrics
    connection: Database engine and session management
    store: Async metric store interface with SQLAlchemy and in-memory backends

Usage:
    from database.store import create_store, QueryFilter

    store = create_store()
    await store.connect()
    await store.insert(record)
    latest = await store.query(QueryFilter(limit=10))
"""

from database.models import Base, HospitalMetricRow
from database.connection import (
    create_db_engine,
    get_session,
    get_session_factory,
    init_database,
)
from database.store import (
    InMemoryMetricStore,
    MetricStore,
    QueryFilter,
    SQLAlchemyMetricStore,
    StoreError,
    create_store,
)

__all__ = [
    # Models
    "Base",
    "HospitalMetricRow",
    # Connection
    "create_db_engine",
    "get_session",
    "get_session_factory",
    "init_database",
    # Store
    "MetricStore",
    "SQLAlchemyMetricStore",
    "InMemoryMetricStore",
    "QueryFilter",
    "StoreError",
    "create_store",
]
