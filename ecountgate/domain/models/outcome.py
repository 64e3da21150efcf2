"""Tagged call outcomes.

`RequestCoordinator.try_call` returns one of these instead of raising, so
callers branch on rate-limit and breaker state explicitly. `unwrap()` gives
back raise semantics at the outer boundary.
"""

from dataclasses import dataclass
from typing import Any, Union

from ecountgate.domain.errors import ErrorBudgetExceededError, GateError, RateLimitExceededError


@dataclass(frozen=True)
class Ok:
    value: Any

    def unwrap(self) -> Any:
        return self.value


@dataclass(frozen=True)
class RateLimited:
    wait_time_ms: int
    rate_class: str
    error: RateLimitExceededError

    def unwrap(self) -> Any:
        raise self.error


@dataclass(frozen=True)
class CircuitOpen:
    error_count: int
    error: ErrorBudgetExceededError

    def unwrap(self) -> Any:
        raise self.error


@dataclass(frozen=True)
class Failed:
    error: GateError

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    def unwrap(self) -> Any:
        raise self.error


CallOutcome = Union[Ok, RateLimited, CircuitOpen, Failed]


def outcome_from_error(error: GateError) -> CallOutcome:
    """Maps a raised GateError onto its tagged outcome."""
    if isinstance(error, RateLimitExceededError):
        return RateLimited(wait_time_ms=error.wait_time_ms, rate_class=error.rate_class, error=error)
    if isinstance(error, ErrorBudgetExceededError):
        return CircuitOpen(error_count=error.error_count, error=error)
    return Failed(error=error)
