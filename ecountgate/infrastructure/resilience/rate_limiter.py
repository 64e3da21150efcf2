"""Implementation of a per-operation rate limiter.

Tracks the last successful call time of every rate class and enforces the
minimum interval between calls. Short waits are slept through automatically
where the class permits it; anything longer is refused with a
RateLimitExceededError carrying the exact remaining time.

When a state file is configured, the last-call map is mirrored to disk so
several processes driving the same account observe each other's calls. The
file is re-read before every execute() and merged by per-class maximum.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

# Domain Layer Imports
from ecountgate.domain.errors import RateLimitExceededError
from ecountgate.domain.events.api_events import ApiCallDeferred, dispatch_event
from ecountgate.domain.models.common import EpochMs, RateClass, RateClassStatus

# Infrastructure Layer Imports
from ecountgate.infrastructure.filesystem.json_state import JsonStateFile, StatePath
from ecountgate.infrastructure.resilience.rate_classes import (
    RateClassConfig,
    lookup_rate_class,
    rate_class_table,
)

logger = logging.getLogger(__name__)

WaitingCallback = Callable[[int, str], Any]


class RateLimiter:
    """Minimum-interval limiter keyed by rate class."""

    def __init__(
        self,
        use_test_server: bool = False,
        state_file_path: Optional[StatePath] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the rate limiter.

        Args:
            use_test_server: Selects the relaxed test-server table instead of
                the production one. Fixed for the lifetime of the limiter.
            state_file_path: Optional JSON file mirroring the last-call map.
            clock: Wall-clock source in seconds.
            sleep: Coroutine used for automatic waits, in seconds.
        """
        self.use_test_server = use_test_server
        self.limits = rate_class_table(use_test_server)
        self.last_call_times: Dict[str, EpochMs] = {}
        self._class_locks: Dict[str, asyncio.Lock] = {}
        self._state_file = JsonStateFile(state_file_path) if state_file_path else None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        logger.debug(
            f"RateLimiter initialized (test_server={use_test_server}, "
            f"state_file={state_file_path or 'None'})"
        )

    def _now_ms(self) -> EpochMs:
        return EpochMs(int(round(self._clock() * 1000)))

    def _config(self, rate_class: RateClass) -> RateClassConfig:
        return lookup_rate_class(self.limits, rate_class)

    # --- Queries ---

    def get_wait_time(self, rate_class: RateClass) -> int:
        """Milliseconds until rate_class may be called again (0 if callable now)."""
        config = self._config(rate_class)
        last_call = self.last_call_times.get(rate_class)
        if last_call is None:
            return 0
        elapsed = self._now_ms() - last_call
        return max(0, config.interval_ms - elapsed)

    def can_call(self, rate_class: RateClass) -> bool:
        return self.get_wait_time(rate_class) == 0

    def check_limit(self, rate_class: RateClass) -> None:
        """Raises RateLimitExceededError if rate_class is inside its window."""
        wait_time_ms = self.get_wait_time(rate_class)
        if wait_time_ms > 0:
            config = self._config(rate_class)
            logger.warning(f"Rate limit exceeded for '{rate_class}' ({config.description}): wait {wait_time_ms}ms")
            raise RateLimitExceededError.for_rate_class(rate_class, wait_time_ms, config.description)

    def get_status(self) -> Dict[str, RateClassStatus]:
        status: Dict[str, RateClassStatus] = {}
        for name, config in self.limits.items():
            wait_time_ms = self.get_wait_time(name)
            status[name] = RateClassStatus(
                can_call=wait_time_ms == 0,
                wait_time_ms=wait_time_ms,
                auto_wait=config.auto_wait,
                description=config.description,
            )
        return status

    # --- State file mirror ---

    async def load_state(self) -> None:
        """Merges the state file into memory, keeping the newer timestamp per class."""
        if self._state_file is None:
            return
        data = await self._state_file.read()
        if not data:
            return
        stored = data.get("lastCallTimes")
        if not isinstance(stored, dict):
            return
        for rate_class, timestamp in stored.items():
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                continue
            current = self.last_call_times.get(rate_class)
            if current is None or timestamp > current:
                self.last_call_times[rate_class] = EpochMs(int(timestamp))
        logger.debug(f"Merged rate limit state from {self._state_file.path}")

    async def _save_state(self) -> None:
        if self._state_file is None:
            return
        payload = {"lastCallTimes": dict(self.last_call_times), "updatedAt": self._now_ms()}
        try:
            async with self._lock:
                await self._state_file.write(payload)
        except OSError as e:
            logger.warning(f"Failed to persist rate limit state to {self._state_file.path}: {e}")

    # --- Mutations ---

    async def record_call(self, rate_class: RateClass) -> None:
        """Stamps rate_class with the current time and mirrors it to disk."""
        self._config(rate_class)
        self.last_call_times[rate_class] = self._now_ms()
        logger.debug(f"Call recorded for rate class '{rate_class}'")
        await self._save_state()

    async def execute(
        self,
        rate_class: RateClass,
        operation: Callable[[], Awaitable[Any]],
        on_waiting: Optional[WaitingCallback] = None,
    ) -> Any:
        """Runs operation under the rate class window.

        Args:
            rate_class: The rate class the operation belongs to.
            operation: Zero-argument coroutine function performing the call.
            on_waiting: Called once with (wait_ms, description) before an
                automatic wait.

        Returns:
            Whatever operation returns.

        Raises:
            RateLimitExceededError: If the window is closed and the wait is
                not allowed or exceeds the class bound. operation is not run.
            ValidationError: If rate_class is unknown.
        """
        config = self._config(rate_class)
        # Same-class calls run one at a time: the next caller re-checks the
        # window only after the previous one has recorded its call.
        async with self._class_lock(rate_class):
            await self.load_state()

            wait_time_ms = self.get_wait_time(rate_class)
            if wait_time_ms > 0:
                if not (config.auto_wait and wait_time_ms <= config.max_auto_wait_ms):
                    self.check_limit(rate_class)

                logger.info(f"Waiting {wait_time_ms}ms for rate class '{rate_class}' ({config.description})")
                dispatch_event(ApiCallDeferred(rate_class=rate_class, wait_time_ms=wait_time_ms, description=config.description))
                if on_waiting is not None:
                    on_waiting(wait_time_ms, config.description)
                await self._sleep(wait_time_ms / 1000)

            result = await operation()
            await self.record_call(rate_class)
            return result

    def _class_lock(self, rate_class: RateClass) -> asyncio.Lock:
        lock = self._class_locks.get(rate_class)
        if lock is None:
            lock = self._class_locks[rate_class] = asyncio.Lock()
        return lock

    async def reset(self, rate_class: Optional[RateClass] = None) -> None:
        """Forgets one rate class, or all of them, in memory and on disk."""
        if rate_class is not None:
            self._config(rate_class)
            # Keep the other classes' windows recorded by other processes.
            await self.load_state()
            self.last_call_times.pop(rate_class, None)
        else:
            self.last_call_times.clear()
        logger.debug(f"Rate limit reset: {rate_class or 'all'}")
        await self._save_state()
