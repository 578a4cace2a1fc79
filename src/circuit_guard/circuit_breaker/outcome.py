"""Result-or-failure values that protected operations may return.

Operations signal failure either by raising or by returning a ``Failure``.
Both are recorded identically by the breaker.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

from circuit_guard.circuit_breaker.exceptions import ReturnedFailureError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Successful operation result."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    """Failed operation result.

    Attributes:
        error: Exception describing the failure, if one is available.
        detail: Optional human-readable failure detail.
    """

    error: BaseException | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def describe(self) -> str:
        if self.detail:
            return self.detail
        if self.error is not None:
            return f"{self.error.__class__.__name__}: {self.error}"
        return "failure"

    def to_exception(self) -> BaseException:
        if self.error is not None:
            return self.error
        return ReturnedFailureError(self.describe())


Outcome = Success[T] | Failure


def is_failure(value: object) -> bool:
    """Return whether an operation result signals failure."""
    return isinstance(value, Failure)
