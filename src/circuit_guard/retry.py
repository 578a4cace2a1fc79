from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)
from tenacity.retry import retry_base

from circuit_guard.circuit_breaker.exceptions import CircuitOpenError


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def retry_unless_circuit_open(
    *retryable: type[BaseException],
) -> retry_base:
    """Retry operation failures but stop as soon as a breaker rejects the call.

    Args:
        *retryable: Exception types worth retrying. Defaults to ``Exception``.
    """
    types = tuple(retryable) if retryable else (Exception,)
    return retry_if_exception(
        lambda exc: isinstance(exc, types) and not isinstance(exc, CircuitOpenError)
    )


def build_exponential_jitter_retrying(
    *,
    policy: RetryBackoffPolicy,
    retry: retry_base | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff.

    The retrying loop wraps breaker calls from the outside. With the default
    ``retry`` predicate a ``CircuitOpenError`` ends the loop immediately so an
    open circuit never sees retry pressure.
    """
    stop = (
        stop_never if policy.attempts is None else stop_after_attempt(policy.attempts)
    )
    options: dict[str, object] = {
        "retry": retry_unless_circuit_open() if retry is None else retry,
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": stop,
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)  # type: ignore[arg-type]
