"""Consecutive-error budget for the upstream account.

The upstream locks an account after a burst of consecutive errors within an
hour. ErrorCircuitBreaker counts failures, resets on any success, and trips
at warning_threshold so calls stop well before the upstream ceiling.
"""

import logging
import time
from typing import Any, Callable, Dict

from ecountgate.domain.errors import ErrorBudgetExceededError
from ecountgate.domain.events.api_events import ErrorBudgetTripped, dispatch_event

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERRORS = 30
DEFAULT_WARNING_THRESHOLD = 25
DEFAULT_RESET_INTERVAL_MS = 60 * 60 * 1000  # 1 hour


class ErrorCircuitBreaker:
    """Sliding error budget with lazy time-based reset."""

    def __init__(
        self,
        warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
        max_errors: int = DEFAULT_MAX_ERRORS,
        reset_interval_ms: int = DEFAULT_RESET_INTERVAL_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.warning_threshold = warning_threshold
        self.max_errors = max_errors
        self.reset_interval_ms = reset_interval_ms
        self._clock = clock
        self._error_count = 0
        self._window_start = self._now_ms()

    def _now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _check_auto_reset(self) -> None:
        now = self._now_ms()
        if now - self._window_start >= self.reset_interval_ms:
            if self._error_count:
                logger.debug(f"Error budget auto-reset (previous count: {self._error_count})")
            self._error_count = 0
            self._window_start = now

    def record_error(self) -> None:
        """Counts one failed call.

        Raises:
            ErrorBudgetExceededError: When the count reaches warning_threshold.
        """
        self._check_auto_reset()
        self._error_count += 1
        logger.debug(f"API error recorded ({self._error_count}/{self.max_errors})")

        if self._error_count == int(self.warning_threshold * 0.8):
            logger.warning(
                f"Approaching error limit: {self._error_count} consecutive errors "
                f"(trips at {self.warning_threshold}, upstream ceiling {self.max_errors})"
            )

        if self._error_count >= self.warning_threshold:
            logger.error(f"Error threshold reached: {self._error_count} consecutive errors")
            dispatch_event(ErrorBudgetTripped(error_count=self._error_count, threshold=self.warning_threshold))
            raise ErrorBudgetExceededError(self._error_count, self.max_errors)

    def record_success(self) -> None:
        if self._error_count > 0:
            logger.debug(f"Error budget reset on success (previous count: {self._error_count})")
            self._error_count = 0

    def get_count(self) -> int:
        self._check_auto_reset()
        return self._error_count

    def can_proceed(self) -> bool:
        return self.get_count() < self.warning_threshold

    def get_status(self) -> Dict[str, Any]:
        count = self.get_count()
        return {
            "error_count": count,
            "max_errors": self.max_errors,
            "warning_threshold": self.warning_threshold,
            "can_proceed": count < self.warning_threshold,
            "next_reset_at": self._window_start + self.reset_interval_ms,
        }

    def reset(self) -> None:
        self._error_count = 0
        self._window_start = self._now_ms()
        logger.debug("Error budget manually reset")
