"""State storage for circuit breakers.

Storage is intentionally decoupled from breaker logic. Every method is one
atomic check-then-act step: it reads the current snapshot, decides, writes the
replacement and returns both. Breakers never hold a storage lock while the
protected operation runs, so the same backend serves asyncio and threads.

State is process-local. Backends must not block on I/O inside a transition.
"""


import itertools
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

from circuit_guard.circuit_breaker.state import (
    Admission,
    BreakerSnapshot,
    CircuitState,
    Transition,
    closed_snapshot,
)


def _seconds_until_probe(
    snapshot: BreakerSnapshot, now: datetime, reset_timeout: float
) -> float:
    reference = snapshot.last_failure_at or snapshot.opened_at or now
    elapsed = (now - reference).total_seconds()
    return max(reset_timeout - elapsed, 0.0)


def _settles_probe(snapshot: BreakerSnapshot, probe_id: int | None) -> bool:
    return (
        probe_id is not None
        and snapshot.state == CircuitState.HALF_OPEN
        and snapshot.probe_in_flight
        and snapshot.probe_id == probe_id
    )


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface.

    ``probe_id`` arguments carry the id handed out by :meth:`acquire` for a
    half-open trial, or ``None`` for ordinary calls. A trial result whose id
    no longer matches the trial in flight is stale and is recorded like an
    ordinary call.
    """

    @abstractmethod
    def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current breaker snapshot for ``name``."""

    @abstractmethod
    def acquire(self, name: str, now: datetime, reset_timeout: float) -> Admission:
        """Decide whether a call may run, moving ``OPEN`` to ``HALF_OPEN`` lazily."""

    @abstractmethod
    def record_success(self, name: str, *, probe_id: int | None) -> Transition:
        """Record a successful call and return the snapshot pair."""

    @abstractmethod
    def record_failure(
        self,
        name: str,
        now: datetime,
        failure_threshold: int,
        *,
        probe_id: int | None,
    ) -> Transition:
        """Record a failed call and return the snapshot pair."""

    @abstractmethod
    def abandon_probe(self, name: str, probe_id: int) -> Transition:
        """Return a half-open breaker to ``OPEN`` as if the probe never ran."""

    @abstractmethod
    def force_open(self, name: str, now: datetime) -> Transition:
        """Force breaker ``name`` into ``OPEN`` and restart the cool-down."""

    @abstractmethod
    def reset(self, name: str) -> Transition:
        """Reset breaker ``name`` to a healthy ``CLOSED`` state."""

    @abstractmethod
    def discard(self, name: str) -> None:
        """Forget all state held for breaker ``name``."""


class InMemoryBreakerStorage(AbstractBreakerStorage):
    """In-memory storage with one thread lock per breaker name."""

    def __init__(self) -> None:
        """Initialize in-memory snapshot and lock registries."""
        self._snapshots: dict[str, BreakerSnapshot] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._probe_ids = itertools.count(1)

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def _next_probe_id(self) -> int:
        with self._locks_guard:
            return next(self._probe_ids)

    @contextmanager
    def _locked(self, name: str) -> Iterator[BreakerSnapshot]:
        while True:
            lock = self._lock_for(name)
            with lock:
                # discard() may have retired this lock while we waited on it.
                if self._locks.get(name) is not lock:
                    continue
                snapshot = self._snapshots.get(name)
                if snapshot is None:
                    snapshot = closed_snapshot(name)
                    self._snapshots[name] = snapshot
                yield snapshot
                return

    def _store(self, previous: BreakerSnapshot, current: BreakerSnapshot) -> Transition:
        self._snapshots[current.name] = current
        return Transition(previous=previous, current=current)

    def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current snapshot, creating a default one if missing."""
        with self._locked(name) as snapshot:
            return snapshot

    def acquire(self, name: str, now: datetime, reset_timeout: float) -> Admission:
        """Admit or reject one call.

        ``CLOSED`` always admits. ``OPEN`` rejects until ``reset_timeout`` has
        elapsed since the last failure, then admits exactly one probe under a
        fresh id and moves to ``HALF_OPEN``. ``HALF_OPEN`` rejects while that
        probe is in flight.
        """
        with self._locked(name) as snapshot:
            unchanged = Transition(previous=snapshot, current=snapshot)
            if snapshot.state == CircuitState.CLOSED:
                return Admission(
                    allowed=True, probe_id=None, retry_after=0.0, transition=unchanged
                )

            if snapshot.state == CircuitState.HALF_OPEN and snapshot.probe_in_flight:
                return Admission(
                    allowed=False, probe_id=None, retry_after=0.0, transition=unchanged
                )

            if snapshot.state == CircuitState.OPEN:
                retry_after = _seconds_until_probe(snapshot, now, reset_timeout)
                if retry_after > 0:
                    return Admission(
                        allowed=False,
                        probe_id=None,
                        retry_after=retry_after,
                        transition=unchanged,
                    )

            probing = replace(
                snapshot,
                state=CircuitState.HALF_OPEN,
                probe_in_flight=True,
                probe_id=self._next_probe_id(),
            )
            return Admission(
                allowed=True,
                probe_id=probing.probe_id,
                retry_after=0.0,
                transition=self._store(snapshot, probing),
            )

    def record_success(self, name: str, *, probe_id: int | None) -> Transition:
        """Record a successful call.

        The success of the trial in flight closes the circuit. A success while
        ``CLOSED`` clears any partial failure streak. Late successes, from calls
        admitted before the circuit opened or from superseded trials, do not
        override ``OPEN`` or ``HALF_OPEN``.
        """
        with self._locked(name) as snapshot:
            if _settles_probe(snapshot, probe_id) or (
                snapshot.state == CircuitState.CLOSED
            ):
                healthy = closed_snapshot(name, probe_id=snapshot.probe_id)
                if snapshot == healthy:
                    return Transition(previous=snapshot, current=snapshot)
                return self._store(snapshot, healthy)
            return Transition(previous=snapshot, current=snapshot)

    def record_failure(
        self,
        name: str,
        now: datetime,
        failure_threshold: int,
        *,
        probe_id: int | None,
    ) -> Transition:
        """Increment the failure streak and open the circuit when required."""
        with self._locked(name) as snapshot:
            failure_count = snapshot.failure_count + 1
            if _settles_probe(snapshot, probe_id):
                updated = replace(
                    snapshot,
                    state=CircuitState.OPEN,
                    failure_count=failure_count,
                    last_failure_at=now,
                    opened_at=now,
                    probe_in_flight=False,
                )
            elif (
                snapshot.state == CircuitState.CLOSED
                and failure_count >= failure_threshold
            ):
                updated = replace(
                    snapshot,
                    state=CircuitState.OPEN,
                    failure_count=failure_count,
                    last_failure_at=now,
                    opened_at=now,
                )
            else:
                updated = replace(
                    snapshot, failure_count=failure_count, last_failure_at=now
                )
            return self._store(snapshot, updated)

    def abandon_probe(self, name: str, probe_id: int) -> Transition:
        """Return to ``OPEN`` with the timestamps held before the probe.

        No-op unless ``probe_id`` is the trial currently in flight.
        """
        with self._locked(name) as snapshot:
            if not _settles_probe(snapshot, probe_id):
                return Transition(previous=snapshot, current=snapshot)
            updated = replace(
                snapshot, state=CircuitState.OPEN, probe_in_flight=False
            )
            return self._store(snapshot, updated)

    def force_open(self, name: str, now: datetime) -> Transition:
        """Force the circuit open and restart the reset timeout window.

        A trial in flight is superseded; its result will be treated as stale.
        """
        with self._locked(name) as snapshot:
            updated = replace(
                snapshot,
                state=CircuitState.OPEN,
                last_failure_at=now,
                opened_at=now,
                probe_in_flight=False,
            )
            return self._store(snapshot, updated)

    def reset(self, name: str) -> Transition:
        """Reset breaker state and counters to a healthy default snapshot."""
        with self._locked(name) as snapshot:
            return self._store(
                snapshot, closed_snapshot(name, probe_id=snapshot.probe_id)
            )

    def discard(self, name: str) -> None:
        """Drop the snapshot and lock for ``name``; a later access starts ``CLOSED``.

        Trial ids come from a storage-wide counter, so results from trials
        admitted before the discard stay stale afterwards.
        """
        with self._locks_guard:
            lock = self._locks.pop(name, None)
        if lock is None:
            self._snapshots.pop(name, None)
            return
        with lock:
            self._snapshots.pop(name, None)
