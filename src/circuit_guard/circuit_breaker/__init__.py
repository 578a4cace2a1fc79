"""Process-local circuit breaker for async and threaded callers.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``CLOSED`` admits every call and counts consecutive failures; reaching
    ``failure_threshold`` opens the circuit. Any success clears the streak.
  - ``OPEN`` rejects calls with ``CircuitOpenError`` without invoking the
    operation until ``reset_timeout`` has elapsed since the last failure. The
    move to ``HALF_OPEN`` happens lazily on the next call, not on a timer.
  - ``HALF_OPEN`` admits exactly one in-flight probe. Other callers are
    rejected with ``retry_after=0``. The probe's outcome closes or reopens
    the circuit.
  - If an excluded exception is raised during a probe, the probe is treated as
    if it never happened: the circuit returns to ``OPEN`` with its previous
    timestamps and a later call may attempt a fresh probe.
"""

from circuit_guard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from circuit_guard.circuit_breaker.clock import Clock, ManualClock, SystemClock
from circuit_guard.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    ReturnedFailureError,
)
from circuit_guard.circuit_breaker.metrics import (
    BreakerListener,
    CallCounters,
    LoggingListener,
)
from circuit_guard.circuit_breaker.outcome import Failure, Outcome, Success
from circuit_guard.circuit_breaker.registry import CircuitBreakerRegistry
from circuit_guard.circuit_breaker.state import BreakerSnapshot, CircuitState
from circuit_guard.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

__all__ = [
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerSnapshot",
    "CallCounters",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "Clock",
    "Failure",
    "InMemoryBreakerStorage",
    "LoggingListener",
    "ManualClock",
    "Outcome",
    "ReturnedFailureError",
    "Success",
    "SystemClock",
]
