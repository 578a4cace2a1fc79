"""Registry holding one circuit breaker per downstream dependency."""

from __future__ import annotations

import threading
from collections.abc import Sequence

from circuit_guard.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from circuit_guard.circuit_breaker.clock import Clock
from circuit_guard.circuit_breaker.metrics import BreakerListener
from circuit_guard.circuit_breaker.state import BreakerSnapshot
from circuit_guard.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)


class CircuitBreakerRegistry:
    """Get-or-create cache of breakers sharing storage, clock and listeners.

    Usage:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
        payments = registry.get("payments-api")
        result = await payments.execute(fetch_invoice)

        # health endpoint
        states = {name: snap.state for name, snap in registry.snapshots().items()}
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Clock | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            config: Default configuration for breakers created by :meth:`get`.
            clock: Time source shared by every breaker.
            storage: Storage shared by every breaker. Defaults to in-memory.
            listeners: Listener hooks attached to every breaker.
        """
        self._config = CircuitBreakerConfig() if config is None else config
        self._clock = clock
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def get(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use.

        ``config`` only applies when the breaker is created; an existing
        breaker keeps the configuration it was built with.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config=self._config if config is None else config,
                    clock=self._clock,
                    storage=self._storage,
                    listeners=self._listeners,
                )
                self._breakers[name] = breaker
            return breaker

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)

    def snapshots(self) -> dict[str, BreakerSnapshot]:
        """Return the current snapshot of every registered breaker."""
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def remove(self, name: str) -> bool:
        """Forget breaker ``name`` and its state. Returns whether it existed."""
        with self._lock:
            breaker = self._breakers.pop(name, None)
        if breaker is None:
            return False
        self._storage.discard(name)
        return True

    def reset_all(self) -> None:
        """Close every registered breaker."""
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
