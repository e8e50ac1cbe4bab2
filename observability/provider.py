"""
Hospital Wait Monitor - Observability Provider

Facade over structured logging, Prometheus metrics and trace contexts.
Pipeline components receive an Observability instance instead of talking to
prometheus_client or the logging config directly.

The record_* helpers here never raise into the caller. Components that
need a single instrument call the ScraperMetrics helpers on
``observability.metrics`` directly.
"""

import functools
import logging
from typing import Any, Callable, Optional, TypeVar

from observability.metrics import ScraperMetrics
from observability.tracing import TraceContext


logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _never_raise(func: F) -> F:
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.warning(
                "Observability call failed",
                extra={"call": func.__name__, "error": str(e)},
            )
            return None

    return wrapper  # type: ignore[return-value]


class Observability:
    """
    Logging, metrics and tracing entry point for the pipeline.

    Attributes:
        service_name: Reported in log extras
        metrics: Prometheus instruments
    """

    def __init__(
        self,
        service_name: str = "hospital-wait-monitor",
        metrics: Optional[ScraperMetrics] = None,
    ):
        self.service_name = service_name
        self.metrics = metrics or ScraperMetrics()
        self._initialized = True

    def is_initialized(self) -> bool:
        return self._initialized

    def new_context(self, **attributes: Any) -> TraceContext:
        """Start a new correlation scope."""
        return TraceContext.new(service=self.service_name, **attributes)

    @_never_raise
    def record_error(
        self,
        operation: str,
        error: BaseException,
        context: Optional[TraceContext] = None,
        **fields: Any,
    ) -> None:
        """Log an error with its operation and count it by type."""
        error_type = type(error).__name__
        self.metrics.errors_by_category.labels(
            operation=operation, error_type=error_type
        ).inc()
        extra = {"operation": operation, "error_type": error_type, "error": str(error), **fields}
        if context is not None:
            extra = context.log_extra(**extra)
        logger.error(f"Operation failed: {operation}", extra=extra)

    @_never_raise
    def record_health_check(self, component: str, healthy: bool, response_time_ms: float) -> None:
        self.metrics.component_health.labels(component=component).set(1 if healthy else 0)
        if component == "database":
            self.metrics.record_database_health(healthy)
        logger.debug(
            "Health check recorded",
            extra={
                "component": component,
                "healthy": healthy,
                "response_time_ms": round(response_time_ms, 2),
            },
        )

    @_never_raise
    def record_operation(self, operation: str, duration_ms: float, success: bool) -> None:
        self.metrics.operation_duration.labels(
            operation=operation, success=str(success).lower()
        ).observe(duration_ms / 1000)

    @_never_raise
    def record_heartbeat(self) -> None:
        self.metrics.heartbeat.inc()

    def shutdown(self) -> None:
        self._initialized = False


__all__ = ["Observability"]
