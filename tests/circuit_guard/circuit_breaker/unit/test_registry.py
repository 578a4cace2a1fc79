from __future__ import annotations

import threading

import pytest

from circuit_guard.circuit_breaker import (
    CallCounters,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    ManualClock,
)
from tests.circuit_guard.support.fakes import DownstreamError, FakeDependency


def test_get_returns_same_breaker_per_name() -> None:
    registry = CircuitBreakerRegistry()

    first = registry.get("payments")
    second = registry.get("payments")

    assert first is second
    assert "payments" in registry
    assert len(registry) == 1


def test_get_applies_default_and_override_config() -> None:
    registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2))

    default = registry.get("payments")
    custom = registry.get("search", CircuitBreakerConfig(failure_threshold=9))
    existing = registry.get("search", CircuitBreakerConfig(failure_threshold=1))

    assert default.config.failure_threshold == 2
    assert custom.config.failure_threshold == 9
    assert existing is custom
    assert existing.config.failure_threshold == 9


def test_breakers_share_clock_and_listeners(clock: ManualClock) -> None:
    counters = CallCounters()
    registry = CircuitBreakerRegistry(
        CircuitBreakerConfig(failure_threshold=1, reset_timeout=30.0),
        clock=clock,
        listeners=[counters],
    )
    payments = registry.get("payments")
    dependency = FakeDependency(healthy=False)

    with pytest.raises(DownstreamError):
        payments.execute_sync(dependency.fetch_sync)
    with pytest.raises(CircuitOpenError):
        payments.execute_sync(dependency.fetch_sync)

    clock.advance(30.0)
    dependency.healthy = True
    assert payments.execute_sync(dependency.fetch_sync) == "payload"
    assert registry.get("search").execute_sync(dependency.fetch_sync) == "payload"

    assert counters.failed == 1
    assert counters.rejected == 1
    assert counters.succeeded == 2


def test_snapshots_report_every_breaker(clock: ManualClock) -> None:
    registry = CircuitBreakerRegistry(
        CircuitBreakerConfig(failure_threshold=1), clock=clock
    )
    registry.get("search")
    registry.get("payments").force_open()

    snapshots = registry.snapshots()

    assert registry.names() == ["payments", "search"]
    assert snapshots["payments"].state == CircuitState.OPEN
    assert snapshots["search"].state == CircuitState.CLOSED


def test_reset_all_closes_every_breaker(clock: ManualClock) -> None:
    registry = CircuitBreakerRegistry(clock=clock)
    registry.get("payments").force_open()
    registry.get("search").force_open()

    registry.reset_all()

    assert {snap.state for snap in registry.snapshots().values()} == {
        CircuitState.CLOSED
    }


def test_remove_forgets_breaker_and_state(clock: ManualClock) -> None:
    registry = CircuitBreakerRegistry(clock=clock)
    registry.get("payments").force_open()

    assert registry.remove("payments") is True
    assert registry.remove("payments") is False
    assert "payments" not in registry
    assert registry.get("payments").state == CircuitState.CLOSED


def test_concurrent_get_creates_one_breaker() -> None:
    registry = CircuitBreakerRegistry()
    barrier = threading.Barrier(8)
    seen: list[object] = []
    seen_lock = threading.Lock()

    def _get() -> None:
        barrier.wait(timeout=5.0)
        breaker = registry.get("payments")
        with seen_lock:
            seen.append(breaker)

    threads = [threading.Thread(target=_get) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert len(seen) == 8
    assert all(breaker is seen[0] for breaker in seen)
