"""
Hospital Wait Monitor - Metric Store

Storage interface used by the job runner and health checker, with a
SQLAlchemy implementation for PostgreSQL/SQLite and an in-memory one for
development and tests.

The SQLAlchemy store runs its blocking session work in a worker thread via
asyncio.to_thread, so the event loop (and the health endpoint) stays
responsive during inserts.

Usage:
    from database.store import create_store, QueryFilter

    store = create_store(settings)
    await store.connect()
    record_id = await store.insert(record)
    result = await store.query(QueryFilter(limit=10))
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config.settings import Settings, get_settings
from database.connection import (
    check_database_health,
    create_db_engine,
    get_session,
    get_session_factory,
    init_database,
)
from database.models import HospitalMetricRow
from scrapers.base import HospitalMetricRecord


logger = logging.getLogger(__name__)

T = TypeVar("T")

SORTABLE_FIELDS = ("timestamp", "wait_time_minutes", "total_patients", "update_delay_minutes")
MAX_QUERY_LIMIT = 1000


# =============================================================================
# Errors
# =============================================================================

class StoreError(Exception):
    """Base class for metric store errors."""


class StoreConnectionError(StoreError):
    """The store is unreachable or not connected."""


class StoreOperationError(StoreError):
    """A read or write failed on a connected store."""


# =============================================================================
# Query Types
# =============================================================================

@dataclass(frozen=True)
class QueryFilter:
    """
    Record selection for ``MetricStore.query``.

    All criteria are optional and combined with AND.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    scraping_success: Optional[bool] = None
    min_wait_time: Optional[int] = None
    max_wait_time: Optional[int] = None
    source_url: Optional[str] = None
    department: Optional[str] = None
    limit: int = 100
    offset: int = 0
    sort_by: str = "timestamp"
    sort_order: str = "desc"

    def __post_init__(self) -> None:
        if not 1 <= self.limit <= MAX_QUERY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_QUERY_LIMIT}")
        if self.offset < 0:
            raise ValueError("offset must not be negative")
        if self.sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"sort_by must be one of {SORTABLE_FIELDS}")
        if self.sort_order not in ("asc", "desc"):
            raise ValueError("sort_order must be 'asc' or 'desc'")

    def matches(self, record: HospitalMetricRecord) -> bool:
        """Apply the filter to one record (used by the in-memory store)."""
        timestamp = _as_utc(record.timestamp)
        if self.start and timestamp < _as_utc(self.start):
            return False
        if self.end and timestamp > _as_utc(self.end):
            return False
        if self.scraping_success is not None and record.scraping_success != self.scraping_success:
            return False
        if self.min_wait_time is not None and record.wait_time_minutes < self.min_wait_time:
            return False
        if self.max_wait_time is not None and record.wait_time_minutes > self.max_wait_time:
            return False
        if self.source_url and record.source_url != self.source_url:
            return False
        if self.department and record.department != self.department:
            return False
        return True


@dataclass
class QueryResult:
    """One page of query results."""

    data: list[HospitalMetricRecord]
    total: int
    took_ms: float = 0.0
    offset: int = 0

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.data) < self.total


@dataclass
class BulkInsertResult:
    inserted: int = 0
    failed: int = 0
    ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StoreHealth:
    """Result of a store health probe."""

    connected: bool
    response_time_ms: float
    version: Optional[str] = None
    last_error: Optional[str] = None
    record_count: Optional[int] = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Interface
# =============================================================================

class MetricStore(ABC):
    """Persistence capability used by the scraping pipeline."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Raises StoreConnectionError."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the connection. Safe to call when not connected."""

    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def health_check(self) -> StoreHealth: ...

    @abstractmethod
    async def insert(self, record: HospitalMetricRecord) -> str:
        """Persist one record and return its id. Raises StoreError."""

    async def bulk_insert(self, records: list[HospitalMetricRecord]) -> BulkInsertResult:
        """Insert records one by one, collecting failures instead of stopping."""
        result = BulkInsertResult()
        for record in records:
            try:
                result.ids.append(await self.insert(record))
                result.inserted += 1
            except StoreError as e:
                result.failed += 1
                result.errors.append(str(e))
        return result

    @abstractmethod
    async def query(self, query_filter: Optional[QueryFilter] = None) -> QueryResult: ...

    async def get_latest(self, source_url: Optional[str] = None) -> Optional[HospitalMetricRecord]:
        """Most recent record, optionally for one source URL."""
        result = await self.query(QueryFilter(source_url=source_url, limit=1))
        return result.data[0] if result.data else None

    @abstractmethod
    async def cleanup(self, older_than: datetime) -> int:
        """Delete records captured before ``older_than``; returns the count."""


# =============================================================================
# SQLAlchemy Implementation
# =============================================================================

class SQLAlchemyMetricStore(MetricStore):
    """
    Metric store backed by a SQLAlchemy engine.

    Args:
        database_url: Connection URL (defaults to settings.database_url)
        settings: Settings for pool options
        engine: Pre-built engine, mainly for tests
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        engine: Optional[Engine] = None,
    ):
        self.settings = settings or get_settings()
        self.database_url = database_url or self.settings.database_url
        self._engine = engine
        self._owns_engine = engine is None
        self._session_factory: Optional[sessionmaker] = None
        self._connected = False
        self._last_error: Optional[str] = None

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return

        try:
            if self._engine is None:
                self._engine = create_db_engine(self.database_url, self.settings)
        except (SQLAlchemyError, ImportError, ValueError) as e:
            self._last_error = str(e)
            raise StoreConnectionError(f"Cannot create engine: {e}") from e

        if not await asyncio.to_thread(init_database, self._engine):
            self._last_error = "Database initialization failed"
            raise StoreConnectionError("Database initialization failed")

        self._session_factory = get_session_factory(self._engine)
        self._connected = True
        logger.info("Metric store connected", extra={"backend": self._engine.dialect.name})

    async def disconnect(self) -> None:
        if self._engine is not None and self._owns_engine:
            await asyncio.to_thread(self._engine.dispose)
            self._engine = None
        self._session_factory = None
        if self._connected:
            logger.info("Metric store disconnected")
        self._connected = False

    async def _run(self, operation: str, work: Callable[[], T]) -> T:
        if not self._connected or self._session_factory is None:
            raise StoreConnectionError("Metric store is not connected")
        try:
            return await asyncio.to_thread(work)
        except SQLAlchemyError as e:
            self._last_error = str(e)
            logger.error(
                "Metric store operation failed",
                extra={"operation": operation, "error": str(e)},
            )
            raise StoreOperationError(f"{operation} failed: {e}") from e

    async def health_check(self) -> StoreHealth:
        if self._engine is None:
            return StoreHealth(connected=False, response_time_ms=0.0, last_error="Not connected")

        status = await asyncio.to_thread(check_database_health, self._engine)
        if status["error"]:
            self._last_error = status["error"]
        return StoreHealth(
            connected=status["connected"] and self._connected,
            response_time_ms=status["response_time_ms"] or 0.0,
            version=status["version"],
            last_error=status["error"] or self._last_error,
        )

    async def insert(self, record: HospitalMetricRecord) -> str:
        def work() -> str:
            with get_session(self._session_factory) as session:
                session.add(HospitalMetricRow.from_record(record))
                session.commit()
            return str(record.id)

        return await self._run("insert", work)

    async def query(self, query_filter: Optional[QueryFilter] = None) -> QueryResult:
        query_filter = query_filter or QueryFilter()
        started = time.monotonic()

        def work() -> tuple[list[HospitalMetricRecord], int]:
            conditions = []
            if query_filter.start:
                conditions.append(HospitalMetricRow.timestamp >= _as_utc(query_filter.start))
            if query_filter.end:
                conditions.append(HospitalMetricRow.timestamp <= _as_utc(query_filter.end))
            if query_filter.scraping_success is not None:
                conditions.append(HospitalMetricRow.scraping_success == query_filter.scraping_success)
            if query_filter.min_wait_time is not None:
                conditions.append(HospitalMetricRow.wait_time_minutes >= query_filter.min_wait_time)
            if query_filter.max_wait_time is not None:
                conditions.append(HospitalMetricRow.wait_time_minutes <= query_filter.max_wait_time)
            if query_filter.source_url:
                conditions.append(HospitalMetricRow.source_url == query_filter.source_url)
            if query_filter.department:
                conditions.append(HospitalMetricRow.department == query_filter.department)

            column = getattr(HospitalMetricRow, query_filter.sort_by)
            order = column.asc() if query_filter.sort_order == "asc" else column.desc()

            with get_session(self._session_factory) as session:
                total = session.scalar(
                    select(func.count()).select_from(HospitalMetricRow).where(*conditions)
                )
                rows = session.scalars(
                    select(HospitalMetricRow)
                    .where(*conditions)
                    .order_by(order)
                    .offset(query_filter.offset)
                    .limit(query_filter.limit)
                ).all()
                return [row.to_record() for row in rows], int(total or 0)

        data, total = await self._run("query", work)
        return QueryResult(
            data=data,
            total=total,
            took_ms=(time.monotonic() - started) * 1000,
            offset=query_filter.offset,
        )

    async def cleanup(self, older_than: datetime) -> int:
        def work() -> int:
            with get_session(self._session_factory) as session:
                result = session.execute(
                    delete(HospitalMetricRow).where(HospitalMetricRow.timestamp < _as_utc(older_than))
                )
                session.commit()
                return result.rowcount or 0

        deleted = await self._run("cleanup", work)
        logger.info("Old metrics deleted", extra={"deleted": deleted, "older_than": older_than.isoformat()})
        return deleted


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryMetricStore(MetricStore):
    """Process-local store for development runs and tests."""

    def __init__(self) -> None:
        self._records: list[HospitalMetricRecord] = []
        self._connected = False

    @property
    def records(self) -> list[HospitalMetricRecord]:
        return list(self._records)

    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def _require_connected(self) -> None:
        if not self._connected:
            raise StoreConnectionError("Metric store is not connected")

    async def health_check(self) -> StoreHealth:
        return StoreHealth(
            connected=self._connected,
            response_time_ms=0.0,
            version="memory",
            last_error=None if self._connected else "Not connected",
            record_count=len(self._records),
        )

    async def insert(self, record: HospitalMetricRecord) -> str:
        self._require_connected()
        if any(existing.id == record.id for existing in self._records):
            raise StoreOperationError(f"Duplicate record id: {record.id}")
        self._records.append(record)
        return str(record.id)

    async def query(self, query_filter: Optional[QueryFilter] = None) -> QueryResult:
        self._require_connected()
        query_filter = query_filter or QueryFilter()
        started = time.monotonic()

        matched = [record for record in self._records if query_filter.matches(record)]
        # None sorts first ascending, like NULLS FIRST
        matched.sort(
            key=lambda record: (
                getattr(record, query_filter.sort_by) is not None,
                getattr(record, query_filter.sort_by),
            ),
            reverse=query_filter.sort_order == "desc",
        )
        page = matched[query_filter.offset: query_filter.offset + query_filter.limit]
        return QueryResult(
            data=page,
            total=len(matched),
            took_ms=(time.monotonic() - started) * 1000,
            offset=query_filter.offset,
        )

    async def cleanup(self, older_than: datetime) -> int:
        self._require_connected()
        cutoff = _as_utc(older_than)
        kept = [record for record in self._records if _as_utc(record.timestamp) >= cutoff]
        deleted = len(self._records) - len(kept)
        self._records = kept
        return deleted


# =============================================================================
# Factory
# =============================================================================

def create_store(settings: Optional[Settings] = None) -> MetricStore:
    """Build the store selected by ``settings.store_backend``."""
    settings = settings or get_settings()
    if settings.store_backend == "memory":
        return InMemoryMetricStore()
    return SQLAlchemyMetricStore(settings=settings)


__all__ = [
    "StoreError",
    "StoreConnectionError",
    "StoreOperationError",
    "QueryFilter",
    "QueryResult",
    "BulkInsertResult",
    "StoreHealth",
    "MetricStore",
    "SQLAlchemyMetricStore",
    "InMemoryMetricStore",
    "create_store",
]
