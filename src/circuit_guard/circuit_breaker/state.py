"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive failures since the last success.
        last_failure_at: Timestamp of the last recorded failure, if any. The
            reset timeout is measured from this instant.
        opened_at: Timestamp when the breaker last entered ``OPEN``, if open.
        probe_in_flight: Whether a half-open trial call is currently running.
        probe_id: Id of the most recently admitted trial call. Only increases,
            so a late result from an earlier trial never settles a newer one.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    opened_at: datetime | None
    probe_in_flight: bool = False
    probe_id: int = 0


def closed_snapshot(name: str, probe_id: int = 0) -> BreakerSnapshot:
    """Return the healthy snapshot for breaker ``name``."""
    return BreakerSnapshot(
        name=name,
        state=CircuitState.CLOSED,
        failure_count=0,
        last_failure_at=None,
        opened_at=None,
        probe_id=probe_id,
    )


@dataclass(frozen=True)
class Transition:
    """Snapshot pair produced by one atomic storage update."""

    previous: BreakerSnapshot
    current: BreakerSnapshot

    @property
    def changed_state(self) -> bool:
        return self.previous.state != self.current.state


@dataclass(frozen=True)
class Admission:
    """Result of an admission check made before invoking an operation.

    Attributes:
        allowed: Whether the operation may be invoked.
        probe_id: Trial id when the admitted call is the single half-open
            trial, else ``None``.
        retry_after: Seconds until a trial may be attempted when rejected.
        transition: Snapshot pair recorded by the admission check.
    """

    allowed: bool
    probe_id: int | None
    retry_after: float
    transition: Transition
