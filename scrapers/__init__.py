"""
Hospital Wait Monitor - Scrapers Package

Browser automation, extraction, retry and scheduling for the wait time
pipeline.

Modules:
    base: Shared data types (targets, metrics, results)
    browser: Playwright browser session manager
    selectors: Field selectors and text patterns
    extractor: Two-phase capture and parse of page content
    retry: Retry engine with exponential backoff
    orchestrator: Single-target scrape workflow
    job_runner: Multi-target job execution and history
    scheduler: APScheduler-based job management

Usage:
    from scrapers import BrowserSessionManager, ScrapeOrchestrator, ScrapeTarget

    orchestrator = ScrapeOrchestrator(BrowserSessionManager())
    await orchestrator.initialize()
    result = await orchestrator.scrape(ScrapeTarget(url, "Rettungsstelle"))

The job runner depends on the database package and is imported from
``scrapers.job_runner`` directly.
"""

from scrapers.base import (
    BrowserType,
    HospitalMetricRecord,
    ParsedMetric,
    ScrapeTarget,
    ScrapingResult,
)
from scrapers.browser import BrowserConfig, BrowserSessionManager
from scrapers.errors import (
    BrowserLaunchError,
    ExtractionError,
    JobFailedError,
    NotInitializedError,
    ScraperError,
)
from scrapers.extractor import ExtractionResult, FieldExtractor
from scrapers.orchestrator import ScrapeOrchestrator, ScrapingConfig
from scrapers.retry import RetryConfig, RetryEngine, RetryResult
from scrapers.scheduler import CronJobConfig, ScrapeScheduler

__all__ = [
    # Data types
    "BrowserType",
    "HospitalMetricRecord",
    "ParsedMetric",
    "ScrapeTarget",
    "ScrapingResult",
    # Browser
    "BrowserConfig",
    "BrowserSessionManager",
    # Errors
    "BrowserLaunchError",
    "ExtractionError",
    "JobFailedError",
    "NotInitializedError",
    "ScraperError",
    # Pipeline
    "ExtractionResult",
    "FieldExtractor",
    "ScrapeOrchestrator",
    "ScrapingConfig",
    "RetryConfig",
    "RetryEngine",
    "RetryResult",
    # Scheduler
    "CronJobConfig",
    "ScrapeScheduler",
]
