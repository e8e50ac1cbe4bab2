"""
Hospital Wait Monitor - Field Extractor

Two-phase extraction of emergency department figures from a loaded page.

Phase 1 (capture) runs every selector strategy from scrapers.selectors and
records the trimmed text of each match, plus the full body text and title.
Phase 2 (parse) runs the regex patterns over that text without touching the
page, so parsing is testable with plain dictionaries.

Parse order per field:
    1. text captured by the field's own selectors, in selector priority order
    2. any other captured text containing one of the field's keywords

Within each tier, patterns are tried in priority order. Every parsed value
is range checked; out-of-range values are skipped and the search continues.

Usage:
    from scrapers.extractor import FieldExtractor

    extractor = FieldExtractor()
    result = await extractor.extract(page, context)
    if result.success:
        print(result.metric.wait_time_minutes)
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from playwright.async_api import Page

from observability.tracing import TraceContext
from scrapers.base import ParsedMetric, RawFieldCapture
from scrapers.errors import ExtractionError
from scrapers.selectors import (
    AMBULANCE_PATIENTS,
    EMERGENCY_CASES,
    FIELD_SPECS,
    TOTAL_PATIENTS,
    UPDATE_DELAY,
    WAIT_TIME,
    FieldSpec,
)


logger = logging.getLogger(__name__)

WAIT_TIME_NOT_FOUND = "Could not extract wait time from page"

PAGE_TEXT_KEY = "page_text"
PAGE_TITLE_KEY = "page_title"

_KEY_INDEX = re.compile(r"\[(\d+)\]$")

PATIENT_FIELDS = {
    "total": TOTAL_PATIENTS,
    "ambulance": AMBULANCE_PATIENTS,
    "emergency": EMERGENCY_CASES,
}


# =============================================================================
# Result
# =============================================================================

@dataclass
class ExtractionResult:
    """Outcome of one extraction attempt."""

    success: bool
    metric: Optional[ParsedMetric] = None
    error: Optional[str] = None
    processing_time_ms: float = 0.0
    elements_found: int = 0
    raw_data: RawFieldCapture = field(default_factory=dict)


# =============================================================================
# Helpers
# =============================================================================

def capture_key(field_name: str, selector: str, index: int) -> str:
    return f"{field_name}:{selector}[{index}]"


def _key_index(key: str) -> int:
    match = _KEY_INDEX.search(key)
    return int(match.group(1)) if match else 0


def first_valid(candidates: Iterable[int], is_valid: Callable[[int], bool]) -> Optional[int]:
    """Return the first candidate accepted by ``is_valid``, else None."""
    for candidate in candidates:
        if is_valid(candidate):
            return candidate
    return None


def _normalize(text: str) -> str:
    # Collapse runs of spaces but keep line breaks as label boundaries
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def calculate_quality_score(metric: ParsedMetric) -> float:
    """
    Advisory completeness score between 0 and 1.

    0.4 for a plausible wait time (at most 5 hours), 0.3 for a plausible
    total patient count (at most 100) and 0.3 for data updated within the
    last hour.
    """
    score = 0.0
    if 0 <= metric.wait_time_minutes <= 300:
        score += 0.4
    if metric.total_patients is not None and 0 <= metric.total_patients <= 100:
        score += 0.3
    if metric.update_delay_minutes is not None and metric.update_delay_minutes < 60:
        score += 0.3
    return round(score, 2)


# =============================================================================
# Extractor
# =============================================================================

class FieldExtractor:
    """
    Captures and parses hospital figures from a page.

    Attributes:
        field_specs: Selector and pattern tables, one per field
        max_matches_per_selector: Elements read per selector
        element_timeout_ms: Timeout for reading one element's text
    """

    def __init__(
        self,
        field_specs: tuple[FieldSpec, ...] = FIELD_SPECS,
        max_matches_per_selector: int = 5,
        element_timeout_ms: int = 1000,
    ):
        self.field_specs = field_specs
        self.max_matches_per_selector = max_matches_per_selector
        self.element_timeout_ms = element_timeout_ms

    # -------------------------------------------------------------------------
    # Phase 1: capture
    # -------------------------------------------------------------------------

    async def capture(self, page: Page, context: Optional[TraceContext] = None) -> RawFieldCapture:
        """
        Read text for every selector strategy plus body text and title.

        Selector failures (invalid selector for the engine, detached element,
        timeouts) are logged at debug level and skipped.
        """
        captured: RawFieldCapture = {}

        for spec in self.field_specs:
            for strategy in spec.selectors:
                try:
                    elements = await page.locator(strategy.selector).all()
                except Exception as e:
                    logger.debug(
                        "Selector failed",
                        extra=self._extra(context, field=spec.name, selector=strategy.selector, error=str(e)),
                    )
                    continue

                for index, element in enumerate(elements[: self.max_matches_per_selector]):
                    try:
                        if strategy.attribute:
                            text = await element.get_attribute(
                                strategy.attribute, timeout=self.element_timeout_ms
                            )
                        else:
                            text = await element.text_content(timeout=self.element_timeout_ms)
                    except Exception as e:
                        logger.debug(
                            "Element read failed",
                            extra=self._extra(context, field=spec.name, selector=strategy.selector, error=str(e)),
                        )
                        continue

                    if text and text.strip():
                        captured[capture_key(spec.name, strategy.selector, index)] = text.strip()

        try:
            body = await page.locator("body").inner_text(timeout=self.element_timeout_ms * 5)
            if body and body.strip():
                captured[PAGE_TEXT_KEY] = body.strip()
        except Exception as e:
            logger.debug("Body text unavailable", extra=self._extra(context, error=str(e)))

        try:
            title = await page.title()
            if title and title.strip():
                captured[PAGE_TITLE_KEY] = title.strip()
        except Exception as e:
            logger.debug("Page title unavailable", extra=self._extra(context, error=str(e)))

        return captured

    # -------------------------------------------------------------------------
    # Phase 2: parse
    # -------------------------------------------------------------------------

    def _field_texts(self, spec: FieldSpec, capture: RawFieldCapture) -> list[str]:
        """Texts captured by the field's own selectors, in priority order."""
        texts = []
        for strategy in spec.selectors:
            base = f"{spec.name}:{strategy.selector}"
            keys = [key for key in capture if key == base or key.startswith(base + "[")]
            keys.sort(key=_key_index)
            texts.extend(_normalize(capture[key]) for key in keys)
        return texts

    def _fallback_texts(self, spec: FieldSpec, capture: RawFieldCapture) -> list[str]:
        """Other captured text mentioning one of the field's keywords."""
        own_prefix = f"{spec.name}:"
        candidates = sorted(
            key for key in capture
            if not key.startswith(own_prefix) and key not in (PAGE_TEXT_KEY, PAGE_TITLE_KEY)
        )
        # Full page text goes last; it is the broadest and noisiest source
        candidates += [key for key in (PAGE_TITLE_KEY, PAGE_TEXT_KEY) if key in capture]
        return [
            _normalize(capture[key])
            for key in candidates
            if spec.matches_keyword(capture[key])
        ]

    def extract_field(self, spec: FieldSpec, capture: RawFieldCapture) -> Optional[int]:
        """
        Find the first in-range value for one field.

        Returns:
            The value, or None when no candidate passes the range check
        """
        for texts in (self._field_texts(spec, capture), self._fallback_texts(spec, capture)):
            for pattern in spec.patterns:
                value = first_valid(
                    (candidate for text in texts for candidate in pattern.candidates(text)),
                    self._range_check(spec, pattern.name),
                )
                if value is not None:
                    return value
        return None

    @staticmethod
    def _range_check(spec: FieldSpec, pattern_name: str) -> Callable[[int], bool]:
        def check(value: int) -> bool:
            if spec.in_range(value):
                return True
            logger.debug(
                "Rejected out-of-range value",
                extra={"field": spec.name, "pattern": pattern_name, "value": value},
            )
            return False

        return check

    def extract_wait_time(self, capture: RawFieldCapture) -> Optional[int]:
        """Wait time in minutes (0-480), hours converted."""
        return self.extract_field(WAIT_TIME, capture)

    def extract_patient_count(self, capture: RawFieldCapture, kind: str = "total") -> Optional[int]:
        """
        Patient count (0-200).

        Args:
            capture: Capture phase output
            kind: ``total``, ``ambulance`` or ``emergency``
        """
        try:
            spec = PATIENT_FIELDS[kind]
        except KeyError:
            raise ValueError(f"Unknown patient count kind: {kind}") from None
        return self.extract_field(spec, capture)

    def extract_update_delay(self, capture: RawFieldCapture) -> Optional[int]:
        """Minutes since the site last updated its figures (0-1440)."""
        return self.extract_field(UPDATE_DELAY, capture)

    def parse(self, capture: RawFieldCapture) -> ParsedMetric:
        """
        Build a ParsedMetric from captured text.

        Raises:
            ExtractionError: If no valid wait time was found
        """
        wait_time = self.extract_wait_time(capture)
        if wait_time is None:
            raise ExtractionError(WAIT_TIME_NOT_FOUND)

        return ParsedMetric(
            wait_time_minutes=wait_time,
            total_patients=self.extract_patient_count(capture, "total"),
            ambulance_patients=self.extract_patient_count(capture, "ambulance"),
            emergency_cases=self.extract_patient_count(capture, "emergency"),
            update_delay_minutes=self.extract_update_delay(capture),
        )

    # -------------------------------------------------------------------------
    # Combined
    # -------------------------------------------------------------------------

    async def extract(self, page: Page, context: Optional[TraceContext] = None) -> ExtractionResult:
        """
        Capture and parse in one step.

        Never raises for missing data; the result carries the error instead.
        """
        started = time.monotonic()
        capture = await self.capture(page, context)
        elements_found = sum(1 for key in capture if key not in (PAGE_TEXT_KEY, PAGE_TITLE_KEY))

        try:
            metric = self.parse(capture)
        except ExtractionError as e:
            processing_ms = (time.monotonic() - started) * 1000
            logger.warning(
                "Extraction failed",
                extra=self._extra(context, error=str(e), elements_found=elements_found),
            )
            return ExtractionResult(
                success=False,
                error=str(e),
                processing_time_ms=processing_ms,
                elements_found=elements_found,
                raw_data=capture,
            )

        processing_ms = (time.monotonic() - started) * 1000
        logger.info(
            "Extraction succeeded",
            extra=self._extra(
                context,
                wait_time_minutes=metric.wait_time_minutes,
                total_patients=metric.total_patients,
                update_delay_minutes=metric.update_delay_minutes,
                elements_found=elements_found,
                processing_time_ms=round(processing_ms, 1),
            ),
        )
        return ExtractionResult(
            success=True,
            metric=metric,
            processing_time_ms=processing_ms,
            elements_found=elements_found,
            raw_data=capture,
        )

    @staticmethod
    def _extra(context: Optional[TraceContext], **fields: Any) -> dict[str, Any]:
        return context.log_extra(**fields) if context else fields


__all__ = [
    "WAIT_TIME_NOT_FOUND",
    "ExtractionResult",
    "FieldExtractor",
    "calculate_quality_score",
    "capture_key",
    "first_valid",
]
