from __future__ import annotations

import pytest

from circuit_guard.circuit_breaker import InMemoryBreakerStorage, ManualClock
from tests.circuit_guard.support.fakes import FakeDependency, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock() -> ManualClock:
    """Provide a deterministic clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def storage() -> InMemoryBreakerStorage:
    return InMemoryBreakerStorage()


@pytest.fixture
def dependency() -> FakeDependency:
    """Provide a healthy downstream double that counts invocations."""
    return FakeDependency()
