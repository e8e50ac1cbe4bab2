"""
Hospital Wait Monitor - Database Models

SQLAlchemy ORM model for stored hospital metrics.
Uses portable column types (Uuid, JSON) so the same schema runs on
PostgreSQL in production and SQLite in tests and local development.

Tables:
    - hospital_metrics: One row per successful scrape

Usage:
    from database.models import HospitalMetricRow

    row = HospitalMetricRow.from_record(record)
    session.add(row)
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from scrapers.base import HospitalMetricRecord, RecordMetadata


# =============================================================================
# Base Class
# =============================================================================

class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# =============================================================================
# Models
# =============================================================================

class HospitalMetricRow(Base):
    """
    Persisted hospital metric.

    Rows are written once per successful scrape and never updated.
    Optional counts are NULL when the page did not show them.
    """

    __tablename__ = "hospital_metrics"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    department: Mapped[str] = mapped_column(String(200), nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    scraping_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    wait_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    total_patients: Mapped[Optional[int]] = mapped_column(Integer)
    ambulance_patients: Mapped[Optional[int]] = mapped_column(Integer)
    emergency_cases: Mapped[Optional[int]] = mapped_column(Integer)
    update_delay_minutes: Mapped[Optional[int]] = mapped_column(Integer)

    scraper_id: Mapped[str] = mapped_column(String(100), nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_hospital_metrics_timestamp", "timestamp"),
        Index("idx_hospital_metrics_source_timestamp", "source_url", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<HospitalMetricRow(department={self.department}, "
            f"wait={self.wait_time_minutes}, timestamp={self.timestamp})>"
        )

    @classmethod
    def from_record(cls, record: HospitalMetricRecord) -> "HospitalMetricRow":
        return cls(
            id=record.id,
            timestamp=record.timestamp,
            department=record.department,
            source_url=record.source_url,
            scraping_success=record.scraping_success,
            wait_time_minutes=record.wait_time_minutes,
            total_patients=record.total_patients,
            ambulance_patients=record.ambulance_patients,
            emergency_cases=record.emergency_cases,
            update_delay_minutes=record.update_delay_minutes,
            scraper_id=record.metadata.scraper_id,
            metadata_json=record.metadata.model_dump(mode="json"),
        )

    def to_record(self) -> HospitalMetricRecord:
        timestamp = self.timestamp
        # SQLite drops tzinfo on the way back
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return HospitalMetricRecord(
            id=self.id,
            timestamp=timestamp,
            department=self.department,
            source_url=self.source_url,
            scraping_success=self.scraping_success,
            wait_time_minutes=self.wait_time_minutes,
            total_patients=self.total_patients,
            ambulance_patients=self.ambulance_patients,
            emergency_cases=self.emergency_cases,
            update_delay_minutes=self.update_delay_minutes,
            metadata=RecordMetadata.model_validate(self.metadata_json),
        )


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "Base",
    "HospitalMetricRow",
]
