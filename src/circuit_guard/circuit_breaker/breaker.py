"""Core circuit breaker implementation."""

import asyncio
import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar, cast

from circuit_guard.circuit_breaker.clock import Clock, SystemClock
from circuit_guard.circuit_breaker.exceptions import CircuitOpenError
from circuit_guard.circuit_breaker.metrics import BreakerListener
from circuit_guard.circuit_breaker.outcome import Failure
from circuit_guard.circuit_breaker.state import (
    Admission,
    BreakerSnapshot,
    CircuitState,
    Transition,
)
from circuit_guard.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)
from circuit_guard.logging import bound_breaker_context

T = TypeVar("T")
P = ParamSpec("P")

_logger = logging.getLogger(__name__)


def _is_async_callable(func: object) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    # Instances whose class defines `async def __call__`.
    return inspect.iscoroutinefunction(getattr(type(func), "__call__", None))


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED``
            before opening.
        reset_timeout: Seconds to wait after the last failure while ``OPEN``
            before allowing a probe.
        expected_exceptions: Exceptions that count as failures. Cancellation
            counts by default.
        excluded_exceptions: Exceptions that must not count as failures.
    """

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    expected_exceptions: tuple[type[BaseException], ...] = (
        Exception,
        asyncio.CancelledError,
    )
    excluded_exceptions: tuple[type[BaseException], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")


class CircuitBreaker:
    """Stateful proxy around a dangerous operation.

    The same breaker protects coroutine functions through :meth:`execute` and
    :meth:`call`, and blocking callables through :meth:`execute_sync` and
    :meth:`call_sync`. Instances can also decorate functions of either kind.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Unique breaker name used for storage and metrics.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            clock: Time source for the reset timeout. Defaults to the system
                clock.
            storage: State storage backend. Defaults to in-memory storage.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._clock = SystemClock() if clock is None else clock
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value!r})"

    @property
    def state(self) -> CircuitState:
        return self._storage.get_state(self.name).state

    @property
    def failure_count(self) -> int:
        return self._storage.get_state(self.name).failure_count

    def snapshot(self) -> BreakerSnapshot:
        """Return the current point-in-time breaker snapshot."""
        return self._storage.get_state(self.name)

    def reset(self) -> None:
        """Manually close the circuit and clear the failure streak."""
        self._emit_transition(self._storage.reset(self.name))

    def force_open(self) -> None:
        """Manually trip the circuit; the cool-down restarts from now."""
        self._emit_transition(self._storage.force_open(self.name, self._clock.now()))

    def _notify(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(self.name, *args)
            except Exception:
                _logger.warning(
                    "Circuit breaker listener failed; continuing",
                    exc_info=True,
                    extra={
                        "breaker": self.name,
                        "hook": hook,
                        "listener": listener.__class__.__name__,
                    },
                )

    def _emit_transition(self, transition: Transition) -> None:
        if transition.changed_state:
            self._notify(
                "on_state_change",
                transition.previous.state,
                transition.current.state,
            )

    def _admit(self) -> Admission:
        admission = self._storage.acquire(
            self.name, self._clock.now(), self.config.reset_timeout
        )
        if not admission.allowed:
            self._notify("on_call_rejected", admission.retry_after)
            raise CircuitOpenError(self.name, retry_after=admission.retry_after)
        self._emit_transition(admission.transition)
        return admission

    def _record_success(self, admission: Admission, elapsed: float) -> None:
        transition = self._storage.record_success(
            self.name, probe_id=admission.probe_id
        )
        self._emit_transition(transition)
        self._notify("on_call_succeeded", elapsed)

    def _record_failure(
        self, admission: Admission, error: BaseException, elapsed: float
    ) -> None:
        transition = self._storage.record_failure(
            self.name,
            self._clock.now(),
            self.config.failure_threshold,
            probe_id=admission.probe_id,
        )
        self._notify("on_call_failed", error, elapsed)
        self._emit_transition(transition)

    def _release(self, admission: Admission) -> None:
        if admission.probe_id is not None:
            self._emit_transition(
                self._storage.abandon_probe(self.name, admission.probe_id)
            )

    def _settle(self, admission: Admission, result: T, start: float) -> T:
        elapsed = max(time.monotonic() - start, 0.0)
        if isinstance(result, Failure):
            self._record_failure(admission, result.to_exception(), elapsed)
        else:
            self._record_success(admission, elapsed)
        return result

    async def call(
        self,
        func: Callable[P, Awaitable[T]] | Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke a callable under circuit breaker protection.

        Args:
            func: Dangerous callable to execute. Awaitable results are awaited.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed, unchanged. A returned
            ``Failure`` is recorded as a failure and returned as-is.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            BaseException: The original exception from ``func`` when it is
                attempted and fails.
        """
        admission = self._admit()
        start = time.monotonic()
        try:
            with bound_breaker_context(self.name):
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
        except self.config.excluded_exceptions:
            self._release(admission)
            raise
        except self.config.expected_exceptions as exc:
            self._record_failure(admission, exc, max(time.monotonic() - start, 0.0))
            raise
        except BaseException:
            self._release(admission)
            raise
        return self._settle(admission, cast(T, result), start)

    async def execute(
        self, operation: Callable[[], Awaitable[T]] | Callable[[], T]
    ) -> T:
        """Run a zero-argument operation under circuit breaker protection."""
        return await self.call(operation)

    def call_sync(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """Invoke a blocking callable under circuit breaker protection.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            TypeError: When ``func`` returns an awaitable; use :meth:`call`.
        """
        admission = self._admit()
        start = time.monotonic()
        try:
            with bound_breaker_context(self.name):
                result = func(*args, **kwargs)
        except self.config.excluded_exceptions:
            self._release(admission)
            raise
        except self.config.expected_exceptions as exc:
            self._record_failure(admission, exc, max(time.monotonic() - start, 0.0))
            raise
        except BaseException:
            self._release(admission)
            raise
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            self._release(admission)
            raise TypeError(
                f"{self.name}: call_sync() got an awaitable; use call() instead"
            )
        return self._settle(admission, result, start)

    def execute_sync(self, operation: Callable[[], T]) -> T:
        """Run a zero-argument blocking operation under protection."""
        return self.call_sync(operation)

    def __call__(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorate ``func`` so every invocation goes through this breaker."""
        if _is_async_callable(func):
            coroutine_func = cast(Callable[P, Awaitable[Any]], func)

            @functools.wraps(func)
            async def _async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                return await self.call(coroutine_func, *args, **kwargs)

            return cast(Callable[P, T], _async_wrapper)

        @functools.wraps(func)
        def _sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return self.call_sync(func, *args, **kwargs)

        return _sync_wrapper
