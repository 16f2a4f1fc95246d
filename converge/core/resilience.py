"""
Converge Core - Resilience patterns.

Bounded exponential backoff for provider calls. Only exceptions listed as
retryable are retried; anything else propagates on the first attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable  # noqa: TC003
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from loguru import logger

from converge.core.metrics import get_registry
from converge.utils.logger import log_prefix

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for a single operation."""

    max_attempts: int = 4
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    label: str = "",
    on_retry: Callable[[int, BaseException], None] | None = None,
    **kwargs: Any,
) -> T:
    """
    Await func(*args, **kwargs), retrying retry_on exceptions with backoff.

    Args:
        func: Async callable
        policy: Attempts and delays
        retry_on: Exception types that are worth another attempt
        label: Name used in log lines and metrics (default: func name)
        on_retry: Optional callback(attempt, error) before each backoff sleep

    Returns:
        The callable's result

    Raises:
        The last retry_on exception once attempts are exhausted, or any
        other exception immediately.
    """
    name = label or getattr(func, "__name__", "call")
    metrics_registry = get_registry()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt == policy.max_attempts:
                logger.error(
                    f"{log_prefix('❌')} Retry exhausted after {policy.max_attempts} attempts: {name}"
                )
                raise

            metrics_registry.counter("converge_retry_attempts_total").inc(
                function=name, attempt=str(attempt)
            )
            if on_retry is not None:
                on_retry(attempt, e)

            delay = policy.delay_for(attempt)
            error_msg = str(e)[:80] + "..." if len(str(e)) > 80 else str(e)
            logger.warning(
                f"{log_prefix('🔄')} Retry {attempt}/{policy.max_attempts} for {name} "
                f"after {delay:.1f}s: {error_msg}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Retry decorator with exponential backoff.

    Example:
        @retry(max_attempts=3, exceptions=(ProviderTransientError,))
        async def describe_instance(...):
            ...
    """
    policy = RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await call_with_retry(
                func, *args, policy=policy, retry_on=exceptions, label=func.__name__, **kwargs
            )

        return wrapper

    return decorator
