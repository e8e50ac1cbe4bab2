"""
Hospital Wait Monitor - Retry Engine

Runs an async operation with bounded, classified retries and exponential
backoff with jitter. Used by the scrape orchestrator around each full
navigate-and-extract attempt.

Errors are classified by substring match of configured signatures against
the exception's class names (its own and its bases) and its message.
Non-retryable errors stop the loop immediately.

Usage:
    from scrapers.retry import RetryEngine, network_operation_config

    engine = RetryEngine()
    result = await engine.execute(fetch_page, "fetch_page", network_operation_config())
    if result.success:
        print(result.data, result.attempts)
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from observability.tracing import TraceContext


logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "TimeoutError",
    "NetworkError",
    "ConnectionError",
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "ECONNREFUSED",
)

# Browser protocol failures seen when the page or network drops mid-navigation
BROWSER_NETWORK_ERRORS: tuple[str, ...] = (
    "net::ERR_NETWORK_CHANGED",
    "net::ERR_CONNECTION_TIMED_OUT",
    "net::ERR_CONNECTION_RESET",
    "net::ERR_NAME_NOT_RESOLVED",
    "Protocol error",
    "Session closed",
    "Target closed",
)


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_ms: Delay before the second attempt
        max_delay_ms: Upper bound for any delay
        backoff_multiplier: Growth factor per attempt (1.0 means linear)
        retryable_errors: Signatures matched against error names and messages
        jitter: Fraction of the delay randomly added or removed
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def with_retryable(self, *signatures: str) -> "RetryConfig":
        """Copy of this config with extra retryable signatures."""
        merged = tuple(dict.fromkeys(self.retryable_errors + signatures))
        return replace(self, retryable_errors=merged)


def network_operation_config() -> RetryConfig:
    """Five attempts with long backoff for page loads over flaky networks."""
    return RetryConfig(
        max_attempts=5,
        base_delay_ms=2000,
        max_delay_ms=30000,
        backoff_multiplier=2.0,
        retryable_errors=DEFAULT_RETRYABLE_ERRORS + BROWSER_NETWORK_ERRORS,
    )


def quick_retry_config() -> RetryConfig:
    """Two fast attempts for cheap operations."""
    return RetryConfig(
        max_attempts=2,
        base_delay_ms=500,
        max_delay_ms=2000,
        backoff_multiplier=1.5,
    )


def linear_backoff_config(max_attempts: int = 3, delay_ms: float = 1000) -> RetryConfig:
    """Constant delay between attempts."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay_ms=delay_ms,
        max_delay_ms=delay_ms,
        backoff_multiplier=1.0,
    )


# =============================================================================
# Result
# =============================================================================

@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation."""

    success: bool
    attempts: int
    total_time_ms: float
    data: Optional[T] = None
    error: Optional[BaseException] = None
    errors: list[str] = field(default_factory=list)

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


# =============================================================================
# Engine
# =============================================================================

def is_retryable(error: BaseException, config: RetryConfig) -> bool:
    """
    Check whether an error matches a retryable signature.

    Args:
        error: Exception raised by the operation
        config: Policy holding the signatures

    Returns:
        True when any signature is a substring of one of the error's class
        names or of its message
    """
    haystacks = [cls.__name__ for cls in type(error).__mro__]
    haystacks.append(str(error))
    return any(
        signature in haystack
        for signature in config.retryable_errors
        for haystack in haystacks
    )


class RetryEngine:
    """
    Executes async operations under a RetryConfig.

    Sleep, random source and clock are injectable so tests can run the
    backoff schedule without waiting.
    """

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_config = default_config or RetryConfig()
        self._sleep = sleep
        self._rng = rng
        self._clock = clock

    def compute_delay(self, attempt: int, config: RetryConfig) -> float:
        """
        Delay in milliseconds after a failed attempt.

        Exponential in the attempt number, capped at ``max_delay_ms``,
        with up to ``jitter`` of the delay added or removed.
        """
        raw = config.base_delay_ms * (config.backoff_multiplier ** (attempt - 1))
        capped = min(config.max_delay_ms, raw)
        offset = capped * config.jitter * (2 * self._rng() - 1)
        return max(0.0, min(config.max_delay_ms, capped + offset))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        config: Optional[RetryConfig] = None,
        context: Optional[TraceContext] = None,
    ) -> RetryResult[T]:
        """
        Run ``operation`` until it succeeds, fails permanently or runs out
        of attempts.

        Never raises for errors from the operation. Task cancellation is
        propagated.

        Args:
            operation: Zero-argument coroutine function
            name: Operation name for logs
            config: Policy (defaults to the engine's default policy)
            context: Trace context for correlated logging

        Returns:
            RetryResult with data on success or the last error on failure
        """
        config = config or self.default_config
        started = self._clock()
        errors: list[str] = []
        last_error: Optional[BaseException] = None
        attempt = 0

        def extra(**fields: Any) -> dict[str, Any]:
            fields = {"operation": name, **fields}
            return context.log_extra(**fields) if context else fields

        while attempt < config.max_attempts:
            attempt += 1
            try:
                data = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                errors.append(f"{type(e).__name__}: {e}")

                if not is_retryable(e, config):
                    logger.warning(
                        f"Non-retryable error in {name}",
                        extra=extra(attempt=attempt, error=str(e), error_type=type(e).__name__),
                    )
                    break

                if attempt >= config.max_attempts:
                    logger.warning(
                        f"Retries exhausted for {name}",
                        extra=extra(attempt=attempt, error=str(e), error_type=type(e).__name__),
                    )
                    break

                delay_ms = self.compute_delay(attempt, config)
                logger.info(
                    f"Retrying {name}",
                    extra=extra(
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        delay_ms=round(delay_ms, 1),
                        error=str(e),
                    ),
                )
                await self._sleep(delay_ms / 1000)
                continue

            total_ms = (self._clock() - started) * 1000
            if attempt > 1:
                logger.info(
                    f"{name} succeeded after retry",
                    extra=extra(attempts=attempt, total_time_ms=round(total_ms, 1)),
                )
            return RetryResult(
                success=True,
                attempts=attempt,
                total_time_ms=total_ms,
                data=data,
                errors=errors,
            )

        return RetryResult(
            success=False,
            attempts=attempt,
            total_time_ms=(self._clock() - started) * 1000,
            error=last_error,
            errors=errors,
        )


__all__ = [
    "DEFAULT_RETRYABLE_ERRORS",
    "BROWSER_NETWORK_ERRORS",
    "RetryConfig",
    "RetryResult",
    "RetryEngine",
    "is_retryable",
    "network_operation_config",
    "quick_retry_config",
    "linear_backoff_config",
]
