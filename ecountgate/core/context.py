"""Composition root for the coordination layer.

create_context() constructs the cache, limiter, breaker, transport, session
manager and coordinator once and groups them in a CoordinatorContext. The
context is passed explicitly to whoever needs it; nothing is reachable
through module-level state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

# Core Layer Imports
from ecountgate.core.coordinator import RequestCoordinator

# Infrastructure Layer Imports
from ecountgate.infrastructure.auth.session_manager import SessionManager
from ecountgate.infrastructure.cache.caching_service import ApiResponseCache, ResponseCache
from ecountgate.infrastructure.config.settings import GateSettings
from ecountgate.infrastructure.http.transport import HttpTransport
from ecountgate.infrastructure.resilience.error_budget import ErrorCircuitBreaker
from ecountgate.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

API_CACHE_MAX_ITEMS = 500


@dataclass
class CoordinatorContext:
    settings: GateSettings
    cache: ApiResponseCache
    rate_limiter: RateLimiter
    breaker: ErrorCircuitBreaker
    transport: HttpTransport
    session_manager: SessionManager
    coordinator: RequestCoordinator
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    def start(self) -> None:
        """Starts the periodic cache sweep. Needs a running event loop."""
        if isinstance(self.cache.cache, ResponseCache):
            self.cache.cache.start_periodic_cleanup()

    async def aclose(self) -> None:
        if isinstance(self.cache.cache, ResponseCache):
            await self.cache.cache.stop_periodic_cleanup()
        await self.transport.aclose()

    def rebuild(self) -> "CoordinatorContext":
        """Returns a fresh context with the same settings and no shared state."""
        return create_context(self.settings, client=self.client, clock=self.clock, sleep=self.sleep)


def create_context(
    settings: GateSettings,
    client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CoordinatorContext:
    """Wires up all components for one account.

    Args:
        settings: Credentials, server selection and file locations.
        client: Optional preconfigured httpx client; the transport creates
            and owns one otherwise.
        clock: Wall-clock source in seconds, shared by every component.
        sleep: Coroutine used for rate-limit waits and retry backoff.
    """
    logger.debug(f"Creating coordinator context (test_server={settings.use_test_server})")
    cache = ApiResponseCache(max_size=API_CACHE_MAX_ITEMS, query_ttl_ms=settings.cache_ttl_ms, clock=clock)
    rate_limiter = RateLimiter(
        use_test_server=settings.use_test_server,
        state_file_path=settings.rate_limit_file_path,
        clock=clock,
        sleep=sleep,
    )
    breaker = ErrorCircuitBreaker(clock=clock)
    transport = HttpTransport(client=client)
    session_manager = SessionManager(
        com_code=settings.com_code,
        user_id=settings.user_id,
        api_cert_key=settings.api_cert_key,
        cache=cache,
        rate_limiter=rate_limiter,
        transport=transport,
        use_test_server=settings.use_test_server,
        session_file_path=settings.session_file_path,
        clock=clock,
    )
    coordinator = RequestCoordinator(
        session_manager=session_manager,
        rate_limiter=rate_limiter,
        breaker=breaker,
        cache=cache,
        transport=transport,
        retry_config=settings.retry,
        retry_sleep=sleep,
    )
    return CoordinatorContext(
        settings=settings,
        cache=cache,
        rate_limiter=rate_limiter,
        breaker=breaker,
        transport=transport,
        session_manager=session_manager,
        coordinator=coordinator,
        clock=clock,
        sleep=sleep,
        client=client,
    )
