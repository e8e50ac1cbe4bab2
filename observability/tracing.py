"""
Hospital Wait Monitor - Trace Context

Explicit correlation and span tracking. A TraceContext is created per job
run and handed down through the job runner, orchestrator, extractor and
retry engine, so no component reads correlation IDs from global state.

Finished spans are emitted as structured DEBUG log records, which is enough
to reconstruct per-attempt timelines from the JSON log file.

Usage:
    from observability.tracing import TraceContext

    context = TraceContext.new(job="hospital_scraping")
    with context.span("scrape", url=target.url) as span:
        span.set_attribute("attempts", 2)
        logger.info("Scraping", extra=context.log_extra())
"""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional


logger = logging.getLogger(__name__)


def generate_correlation_id() -> str:
    """Return a new random correlation ID."""
    return uuid.uuid4().hex


@dataclass
class Span:
    """A timed unit of work inside a trace."""

    name: str
    correlation_id: str
    parent_id: Optional[str] = None
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    attributes: dict[str, Any] = field(default_factory=dict)
    status: str = "unset"
    status_message: Optional[str] = None
    exceptions: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    ended_at: Optional[float] = None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_attributes(self, **attributes: Any) -> None:
        self.attributes.update(attributes)

    def record_exception(self, exc: BaseException) -> None:
        self.exceptions.append(f"{type(exc).__name__}: {exc}")

    def set_status(self, status: str, message: Optional[str] = None) -> None:
        """Set span status to ``ok`` or ``error``."""
        self.status = status
        self.status_message = message

    def end(self) -> None:
        if self.ended_at is None:
            self.ended_at = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.monotonic()
        return (end - self.started_at) * 1000


@dataclass(frozen=True)
class TraceContext:
    """
    Correlation scope for one job run or one scrape.

    Attributes:
        correlation_id: ID stamped on every log line within this scope
        parent_id: Correlation ID of the enclosing scope, if any
        attributes: Static attributes added to every span
    """

    correlation_id: str
    parent_id: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, **attributes: Any) -> "TraceContext":
        return cls(correlation_id=generate_correlation_id(), attributes=attributes)

    def child(self, **attributes: Any) -> "TraceContext":
        """Create a nested scope with a fresh correlation ID."""
        merged = {**self.attributes, **attributes}
        return TraceContext(
            correlation_id=generate_correlation_id(),
            parent_id=self.correlation_id,
            attributes=merged,
        )

    def log_extra(self, **fields: Any) -> dict[str, Any]:
        """Build an ``extra`` mapping for logger calls."""
        extra = {"correlation_id": self.correlation_id}
        if self.parent_id:
            extra["parent_correlation_id"] = self.parent_id
        extra.update(fields)
        return extra

    @contextmanager
    def span(self, name: str, **attributes: Any) -> Iterator[Span]:
        """
        Time a block of work.

        Exceptions are recorded on the span and re-raised. The span is
        marked ``ok`` on normal exit unless the block already set a status.
        """
        span = Span(
            name=name,
            correlation_id=self.correlation_id,
            parent_id=self.parent_id,
            attributes={**self.attributes, **attributes},
        )
        try:
            yield span
        except BaseException as exc:
            span.record_exception(exc)
            span.set_status("error", str(exc))
            raise
        else:
            if span.status == "unset":
                span.set_status("ok")
        finally:
            span.end()
            logger.debug(
                f"Span finished: {name}",
                extra=self.log_extra(
                    span=name,
                    span_id=span.span_id,
                    span_status=span.status,
                    duration_ms=round(span.duration_ms, 2),
                    attributes=span.attributes,
                    exceptions=span.exceptions or None,
                ),
            )


__all__ = [
    "Span",
    "TraceContext",
    "generate_correlation_id",
]
