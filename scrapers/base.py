"""
Hospital Wait Monitor - Scraper Data Models

Shared types for the scraping pipeline: scrape targets, parsed metrics,
the persisted record shape and the structured scrape result.

Parsed metrics and stored records are immutable pydantic models so range
checks happen once at construction. Results that are built up step by step
during a scrape are plain dataclasses.

Usage:
    from scrapers.base import ScrapeTarget, ParsedMetric, HospitalMetricRecord

    target = ScrapeTarget(url="https://example.de/notaufnahme", department="ZNA")
    metric = ParsedMetric(wait_time_minutes=45, total_patients=12)
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class BrowserType(str, Enum):
    """Playwright browser engines."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


# Type alias for the capture phase output: capture key -> trimmed text.
# Keys are "<field>:<selector>", "page_text" or "page_title".
RawFieldCapture = dict[str, str]


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Targets
# =============================================================================

@dataclass(frozen=True)
class ScrapeTarget:
    """One hospital page scraped on every job run."""

    url: str
    department: str


# =============================================================================
# Metrics and Records
# =============================================================================

class ParsedMetric(BaseModel):
    """
    Validated values extracted from one page.

    Optional fields are None when the page did not show them. A missing
    value is never reported as zero.
    """

    model_config = ConfigDict(frozen=True)

    wait_time_minutes: int = Field(ge=0, le=1440)
    total_patients: Optional[int] = Field(default=None, ge=0)
    ambulance_patients: Optional[int] = Field(default=None, ge=0)
    emergency_cases: Optional[int] = Field(default=None, ge=0)
    update_delay_minutes: Optional[int] = Field(default=None, ge=0, le=1440)


class RecordMetadata(BaseModel):
    """Provenance attached to every stored record."""

    model_config = ConfigDict(frozen=True)

    scraper_id: str
    version: str
    processing_time_ms: int = Field(ge=0)
    browser_type: BrowserType
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None
    error_message: Optional[str] = None


class HospitalMetricRecord(ParsedMetric):
    """A parsed metric plus identity, capture time and provenance."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    department: str = Field(min_length=1)
    scraping_success: bool = True
    source_url: str = Field(min_length=1)
    metadata: RecordMetadata

    @classmethod
    def from_metric(
        cls,
        metric: ParsedMetric,
        target: ScrapeTarget,
        metadata: RecordMetadata,
        timestamp: Optional[datetime] = None,
    ) -> "HospitalMetricRecord":
        """Stamp a parsed metric with target and provenance."""
        return cls(
            **metric.model_dump(),
            department=target.department,
            source_url=target.url,
            metadata=metadata,
            timestamp=timestamp or utc_now(),
        )


# =============================================================================
# Scrape Results
# =============================================================================

@dataclass
class ScrapingMetrics:
    """Timing breakdown of one scrape."""

    total_time_ms: float = 0.0
    page_load_time_ms: float = 0.0
    extraction_time_ms: float = 0.0
    retries: int = 0


@dataclass
class ScrapingResult:
    """
    Outcome of scraping one target.

    On success ``data`` holds the record. On failure ``error`` holds the
    last error message and ``metrics.retries`` the number of retries used.
    """

    success: bool
    url: str
    scraper_id: str
    browser_type: BrowserType
    data: Optional[HospitalMetricRecord] = None
    error: Optional[str] = None
    metrics: ScrapingMetrics = field(default_factory=ScrapingMetrics)
    quality_score: Optional[float] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "url": self.url,
            "scraper_id": self.scraper_id,
            "browser_type": self.browser_type.value,
            "error": self.error,
            "quality_score": self.quality_score,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
            "metrics": {
                "total_time_ms": round(self.metrics.total_time_ms, 2),
                "page_load_time_ms": round(self.metrics.page_load_time_ms, 2),
                "extraction_time_ms": round(self.metrics.extraction_time_ms, 2),
                "retries": self.metrics.retries,
            },
            "data": self.data.model_dump(mode="json") if self.data else None,
        }


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "BrowserType",
    "RawFieldCapture",
    "ScrapeTarget",
    "ParsedMetric",
    "RecordMetadata",
    "HospitalMetricRecord",
    "ScrapingMetrics",
    "ScrapingResult",
    "utc_now",
]
