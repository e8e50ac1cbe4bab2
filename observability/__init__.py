"""
Hospital Wait Monitor - Observability Package

Modules:
    tracing: Explicit correlation contexts and timed spans
    metrics: Prometheus instruments with a private registry
    provider: Facade used by pipeline components
"""

from observability.metrics import ScraperMetrics
from observability.provider import Observability
from observability.tracing import Span, TraceContext

__all__ = [
    "Observability",
    "ScraperMetrics",
    "Span",
    "TraceContext",
]
