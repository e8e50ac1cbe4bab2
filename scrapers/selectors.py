"""
Hospital Wait Monitor - Selector and Pattern Tables

Per-field extraction strategies as plain data. Each field has:
    - a priority-ordered list of CSS/text selectors for the capture phase
    - a priority-ordered list of regex patterns for the parse phase
    - keywords that qualify other captured text as a fallback source
    - a sanity range; parsed values outside it are rejected, not clamped

The target site's markup changes without notice, so the selector lists are
deliberately redundant. Add new strategies here rather than branching in
the extractor.
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional


# =============================================================================
# Strategy Types
# =============================================================================

@dataclass(frozen=True)
class SelectorStrategy:
    """
    One way of locating a field on the page.

    Attributes:
        selector: Playwright selector (CSS or text engine)
        attribute: Read this attribute instead of text content
    """

    selector: str
    attribute: Optional[str] = None


@dataclass(frozen=True)
class PatternSpec:
    """
    One regex phrasing that yields an integer.

    Attributes:
        pattern: Compiled regex; group 1 holds the main number, which may
            carry a decimal comma or point ("1,5 Std")
        multiplier: Applied to group 1 (60 converts hours to minutes); the
            product is rounded to whole minutes
        minutes_group: Optional group holding extra minutes ("2 Std 15 Min")
        name: Label used in debug logs
    """

    pattern: re.Pattern
    multiplier: int = 1
    minutes_group: Optional[int] = None
    name: str = ""

    def candidates(self, text: str) -> Iterator[int]:
        """Yield every value this pattern finds in ``text``, in order."""
        for match in self.pattern.finditer(text):
            value = round(float(match.group(1).replace(",", ".")) * self.multiplier)
            if self.minutes_group is not None and match.group(self.minutes_group):
                value += int(match.group(self.minutes_group))
            yield value


@dataclass(frozen=True)
class FieldSpec:
    """Everything needed to capture and parse one semantic field."""

    name: str
    selectors: tuple[SelectorStrategy, ...]
    patterns: tuple[PatternSpec, ...]
    keywords: tuple[str, ...]
    min_value: int
    max_value: int
    required: bool = False

    def in_range(self, value: int) -> bool:
        return self.min_value <= value <= self.max_value

    def matches_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self.keywords)


def _p(regex: str, multiplier: int = 1, minutes_group: Optional[int] = None, name: str = "") -> PatternSpec:
    return PatternSpec(
        pattern=re.compile(regex, re.IGNORECASE),
        multiplier=multiplier,
        minutes_group=minutes_group,
        name=name or regex,
    )


# =============================================================================
# Shared Fragments
# =============================================================================

_HOURS = r"(?:std|stunden?|hours?|hrs?|h)\b\.?"
_MINUTES = r"min(?:uten|utes?|\.)?"
# A number that is a count, not a duration or percentage
_COUNT = r"(\d+)\b(?!\s*(?:min|std|stunde|hour|hrs?\b|h\b|%))"
# Gap between a label and its number, staying on one line
_GAP = r"[^\d\n]{0,30}?"
# Hours may be fractional ("1,5 Std")
_DECIMAL = r"(\d+(?:[,.]\d+)?)"
# A bare whole number, not the integer part of a decimal and not followed by
# an hours unit
_NOT_HOURS = rf"\b(?![,.]\d)(?!\s*{_HOURS})"
# Not the tail of a decimal and not an "updated N ago" phrase
_NOT_AGO = r"(?<!\d[,.])(?<!vor )(?<!vor ca )(?<!vor ca\. )(?<!vor etwa )(?<!vor circa )"
# "vor 3 min", "vor ca. 3 min"
_VOR = r"\bvor\s*(?:(?:ca\.?|etwa|circa)\s*)?"


# =============================================================================
# Field Tables
# =============================================================================

WAIT_TIME = FieldSpec(
    name="wait_time",
    selectors=(
        SelectorStrategy('[class*="wait"][class*="time"]'),
        SelectorStrategy('[id*="wait"][id*="time"]'),
        SelectorStrategy(".wartezeitAnzeige"),
        SelectorStrategy(".wartezeit"),
        SelectorStrategy(".wait-time"),
        SelectorStrategy(".emergency-wait"),
        SelectorStrategy("[data-wait-time]", attribute="data-wait-time"),
        SelectorStrategy('span:has-text("min")'),
        SelectorStrategy('div:has-text("Wartezeit")'),
        SelectorStrategy('div:has-text("min")'),
    ),
    patterns=(
        _p(rf"wartezeit{_GAP}(\d+)\s*{_HOURS}\s*(?:und\s*)?(\d+)\s*{_MINUTES}", 60, 2, "wartezeit_h_min"),
        _p(rf"wartezeit{_GAP}{_DECIMAL}\s*{_HOURS}", 60, name="wartezeit_hours"),
        _p(rf"wartezeit{_GAP}(\d+){_NOT_HOURS}", name="wartezeit"),
        _p(rf"wait(?:ing)?[\s-]*time{_GAP}(\d+)\s*{_HOURS}\s*(?:and\s*)?(\d+)\s*{_MINUTES}", 60, 2, "wait_time_h_min"),
        _p(rf"wait(?:ing)?[\s-]*time{_GAP}{_DECIMAL}\s*{_HOURS}", 60, name="wait_time_hours"),
        _p(rf"wait(?:ing)?[\s-]*time{_GAP}(\d+){_NOT_HOURS}", name="wait_time"),
        _p(rf"{_NOT_AGO}\b{_DECIMAL}\s*{_HOURS}(?!\s*ago)", 60, name="hours"),
        _p(rf"{_NOT_AGO}\b(\d+)\s*{_MINUTES}(?![a-z])(?!\s*ago)", name="minutes"),
    ),
    keywords=("wartezeit", "warte", "wait", "min", "stunde", "std", "hour"),
    min_value=0,
    max_value=480,
    required=True,
)

TOTAL_PATIENTS = FieldSpec(
    name="total_patients",
    selectors=(
        SelectorStrategy('[class*="patient"]'),
        SelectorStrategy('[class*="anzahl"]'),
        SelectorStrategy('[id*="patient"]'),
        SelectorStrategy(".patient-count"),
        SelectorStrategy(".emergency-count"),
        SelectorStrategy('span:has-text("Patient")'),
        SelectorStrategy('div:has-text("Patienten")'),
    ),
    patterns=(
        _p(rf"\bpatient(?:en|innen|s)?\b{_GAP}{_COUNT}", name="patients_label"),
        _p(rf"{_COUNT}\s+patient(?:en|innen|s)?\b", name="n_patients"),
        _p(rf"\b(?:gesamt|total|anzahl)\b{_GAP}{_COUNT}", name="total_label"),
    ),
    keywords=("patient", "gesamt", "total", "anzahl"),
    min_value=0,
    max_value=200,
)

AMBULANCE_PATIENTS = FieldSpec(
    name="ambulance_patients",
    selectors=(
        SelectorStrategy('[class*="rettung"]'),
        SelectorStrategy('[class*="ambulance"]'),
        SelectorStrategy('[id*="rettung"]'),
        SelectorStrategy('span:has-text("Rettungswagen")'),
        SelectorStrategy('div:has-text("Rettungsdienst")'),
    ),
    patterns=(
        _p(
            rf"\b(?:rettungswagen|rettungsdienst|krankenwagen|rtw|ambulances?)\b{_GAP}{_COUNT}",
            name="ambulance_label",
        ),
        _p(
            rf"{_COUNT}\s+(?:rettungswagen|krankenwagen|rtw|ambulances?)\b",
            name="n_ambulances",
        ),
    ),
    keywords=("rettung", "ambulance", "krankenwagen", "rtw"),
    min_value=0,
    max_value=200,
)

EMERGENCY_CASES = FieldSpec(
    name="emergency_cases",
    selectors=(
        SelectorStrategy('[class*="notfall"]'),
        SelectorStrategy('[class*="emergency-cases"]'),
        SelectorStrategy('[id*="notfall"]'),
        SelectorStrategy('span:has-text("Notfälle")'),
    ),
    patterns=(
        _p(
            rf"\b(?:notf[äa]ll(?:e|en)?|emergenc(?:y|ies)|dringend|urgent)\b"
            rf"(?:(?!wait|warte)[^\d\n]){{0,30}}?{_COUNT}",
            name="emergency_label",
        ),
        _p(
            rf"{_COUNT}\s+(?:notf[äa]ll(?:e|en)?|emergenc(?:y|ies)|urgent)\b",
            name="n_emergencies",
        ),
    ),
    keywords=("notfall", "notfäll", "emergency", "emergencies", "dringend", "urgent"),
    min_value=0,
    max_value=200,
)

UPDATE_DELAY = FieldSpec(
    name="update_delay",
    selectors=(
        SelectorStrategy('[class*="update"]'),
        SelectorStrategy('[class*="aktuell"]'),
        SelectorStrategy('[id*="update"]'),
        SelectorStrategy(".last-updated"),
        SelectorStrategy(".timestamp"),
        SelectorStrategy('span:has-text("aktualisiert")'),
        SelectorStrategy('div:has-text("vor")'),
        SelectorStrategy("time"),
    ),
    patterns=(
        _p(rf"{_VOR}(\d+)\s*{_MINUTES}", name="vor_min"),
        _p(rf"{_VOR}{_DECIMAL}\s*{_HOURS}", 60, name="vor_hours"),
        _p(rf"\b(\d+)\s*{_MINUTES}\s*ago\b", name="min_ago"),
        _p(rf"\b{_DECIMAL}\s*{_HOURS}\s*ago\b", 60, name="hours_ago"),
        _p(rf"updated{_GAP}(\d+)\s*{_MINUTES}", name="updated_min"),
    ),
    keywords=("vor", "ago", "aktualisiert", "updated", "stand"),
    min_value=0,
    max_value=1440,
)

FIELD_SPECS: tuple[FieldSpec, ...] = (
    WAIT_TIME,
    TOTAL_PATIENTS,
    AMBULANCE_PATIENTS,
    EMERGENCY_CASES,
    UPDATE_DELAY,
)

# Readiness selectors, tried in order with short timeouts
CONTENT_READY_SELECTORS = (".content, .main, #main, .container", 10_000)
DATA_READY_SELECTORS = ('[class*="wait"], [class*="time"], [id*="wait"], [id*="time"]', 5_000)


__all__ = [
    "SelectorStrategy",
    "PatternSpec",
    "FieldSpec",
    "WAIT_TIME",
    "TOTAL_PATIENTS",
    "AMBULANCE_PATIENTS",
    "EMERGENCY_CASES",
    "UPDATE_DELAY",
    "FIELD_SPECS",
    "CONTENT_READY_SELECTORS",
    "DATA_READY_SELECTORS",
]
