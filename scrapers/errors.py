"""
Hospital Wait Monitor - Scraper Errors

Exception types raised inside the scraping pipeline. The retry engine
classifies errors by class name and message, so names here are part of the
retry configuration surface.
"""


class ScraperError(Exception):
    """Base class for scraping pipeline errors."""


class BrowserLaunchError(ScraperError):
    """The browser process or context could not be started."""


class NotInitializedError(ScraperError):
    """A page was requested before the browser session was initialized."""


class ExtractionError(ScraperError):
    """The page loaded but no valid wait time could be parsed from it."""


class JobFailedError(ScraperError):
    """A scraping job finished without scraping any target."""


__all__ = [
    "ScraperError",
    "BrowserLaunchError",
    "NotInitializedError",
    "ExtractionError",
    "JobFailedError",
]
