"""Observability hooks for circuit breakers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from circuit_guard.circuit_breaker.state import CircuitState
from circuit_guard.logging import (
    StructuredLogger,
    get_breaker_logger,
    log_error,
    log_info,
    log_warning,
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Hooks run after the breaker state has been updated and outside any lock.
    They are synchronous so the same listener serves async and blocking calls;
    listeners must not block.
    """

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str, retry_after: float) -> None:
        """Handle call rejection while the circuit is open."""

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    def on_call_failed(self, name: str, error: BaseException, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingListener:
    """Emit one structured log event per breaker transition or failure."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger: StructuredLogger = (
            get_breaker_logger() if logger is None else logger
        )

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        log_fn = log_warning if new == CircuitState.OPEN else log_info
        log_fn(
            self._logger,
            "circuit_breaker.state_changed",
            breaker=name,
            old_state=str(old),
            new_state=str(new),
        )

    def on_call_rejected(self, name: str, retry_after: float) -> None:
        log_info(
            self._logger,
            "circuit_breaker.call_rejected",
            breaker=name,
            retry_after=retry_after,
        )

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        return

    def on_call_failed(self, name: str, error: BaseException, elapsed: float) -> None:
        log_error(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            error_type=error.__class__.__name__,
            error=str(error),
            elapsed=elapsed,
        )


@dataclass
class CallCounters:
    """In-process counters aggregated across every breaker it listens to."""

    succeeded: int = 0
    failed: int = 0
    rejected: int = 0
    state_changes: int = 0
    last_state: dict[str, CircuitState] = field(default_factory=dict)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        with self._lock:
            self.state_changes += 1
            self.last_state[name] = new

    def on_call_rejected(self, name: str, retry_after: float) -> None:
        with self._lock:
            self.rejected += 1

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        with self._lock:
            self.succeeded += 1

    def on_call_failed(self, name: str, error: BaseException, elapsed: float) -> None:
        with self._lock:
            self.failed += 1

    def as_dict(self) -> dict[str, object]:
        with self._lock:
            return {
                "succeeded": self.succeeded,
                "failed": self.failed,
                "rejected": self.rejected,
                "state_changes": self.state_changes,
                "last_state": {
                    name: str(state) for name, state in self.last_state.items()
                },
            }
