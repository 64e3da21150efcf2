"""Domain Events related to outbound calls and resilience.

Examples include events for when calls are deferred by the rate limiter,
retried, re-authenticated, or when the error budget trips.
"""

from dataclasses import dataclass, field
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when a call is about to be sent upstream."""
    endpoint: str
    rate_class: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a call succeeds."""
    endpoint: str
    rate_class: str
    latency_ms: float
    from_cache: bool = False
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively."""
    endpoint: str
    rate_class: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when a call is deferred by an automatic rate-limit wait."""
    rate_class: str
    wait_time_ms: int
    description: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a transient failure is scheduled for another attempt."""
    attempt_number: int
    delay_ms: int
    error_type: str
    endpoint: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class SessionRenewed(DomainEvent):
    """Event triggered when a session-expiry response forces a fresh login."""
    endpoint: str
    reason: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ErrorBudgetTripped(DomainEvent):
    """Event triggered when the consecutive-error guard trips."""
    error_count: int
    threshold: int
    timestamp: float = field(default_factory=time.time)


def dispatch_event(event: DomainEvent) -> None:
    """Publishes an event. Events are only logged for now."""
    logger.debug(f"EVENT: {event}")
