"""Request coordination for outbound upstream calls.

RequestCoordinator is the single entry point the outer tool layer uses. One
call goes through, in order: the response cache, the error budget, the rate
limiter, the session manager, the transport, and response classification.
A session-expiry response is re-authenticated and resubmitted exactly once
inside the window the original call already consumed.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, NoReturn, Optional

# Domain Layer Imports
from ecountgate.domain.errors import (
    ErrorBudgetExceededError,
    GateError,
    RateLimitExceededError,
    TransportError,
    UpstreamApiError,
)
from ecountgate.domain.events.api_events import (
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    SessionRenewed,
    dispatch_event,
)
from ecountgate.domain.models.common import OperationId, Payload, RateClass, SessionId
from ecountgate.domain.models.outcome import CallOutcome, Ok, outcome_from_error

# Core Layer Imports
from ecountgate.core.response_parser import ApiEnvelope, is_session_expiry, parse_api_envelope

# Infrastructure Layer Imports
from ecountgate.infrastructure.auth.session_manager import SessionManager
from ecountgate.infrastructure.cache.caching_service import ApiResponseCache
from ecountgate.infrastructure.http.transport import BUSINESS_TIMEOUT_S, HttpTransport
from ecountgate.infrastructure.resilience.api_retry import RetryConfig, is_transient_error, with_retry
from ecountgate.infrastructure.resilience.error_budget import ErrorCircuitBreaker
from ecountgate.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

THROTTLE_STATUS_CODES = (302, 412)


def redact_session_id(session_id: Optional[SessionId]) -> Optional[str]:
    return f"***{session_id[-8:]}" if session_id else None


class RequestCoordinator:
    """Orchestrates one outbound call through cache, limiter, session and breaker."""

    def __init__(
        self,
        session_manager: SessionManager,
        rate_limiter: RateLimiter,
        breaker: ErrorCircuitBreaker,
        cache: ApiResponseCache,
        transport: HttpTransport,
        retry_config: Optional[RetryConfig] = None,
        retry_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the RequestCoordinator.

        Args:
            session_manager: Supplies and renews the session id.
            rate_limiter: Gates every call by its rate class.
            breaker: Consecutive-error budget.
            cache: Response cache facade.
            transport: HTTP transport for business calls.
            retry_config: When set, each POST is retried on transient
                failures (5xx, timeout, network) with exponential backoff.
            retry_sleep: Coroutine used for backoff waits.
        """
        self.session_manager = session_manager
        self.rate_limiter = rate_limiter
        self.breaker = breaker
        self.cache = cache
        self.transport = transport
        self.retry_config = retry_config
        self._retry_sleep = retry_sleep
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.session_manager.initialize()
        self._initialized = True

    async def _ensure_session(self) -> str:
        await self.initialize()
        return await self.session_manager.ensure_session()

    # --- Main entry points ---

    async def call(
        self,
        operation_id: OperationId,
        payload: Payload,
        *,
        rate_class: RateClass,
        use_cache: bool = False,
        cache_key_params: Optional[Dict[str, Any]] = None,
        is_high_frequency_read: bool = False,
    ) -> Any:
        """Performs one upstream operation.

        Args:
            operation_id: Endpoint path, e.g. '/OAPI/V2/Sale/SaveSale'.
            payload: JSON request body.
            rate_class: Rate class the operation belongs to.
            use_cache: Serve from and store into the response cache.
            cache_key_params: Parameters identifying the cached entry;
                defaults to the payload.
            is_high_frequency_read: Cache with the short single-lookup TTL.

        Returns:
            The `Data` member of the upstream response.

        Raises:
            ErrorBudgetExceededError: If the error budget is exhausted.
            RateLimitExceededError: If the rate window is closed, or the
                upstream signals throttling.
            AuthenticationError: If a session cannot be obtained.
            TransportError: On timeouts, network failures, HTTP errors and
                unparsable bodies.
            UpstreamApiError: If the upstream reports failure in the body.
        """
        key_params = cache_key_params if cache_key_params is not None else payload
        if use_cache:
            cached = self.cache.get_api_response(operation_id, key_params)
            if cached is not None:
                logger.debug(f"Cache hit for {operation_id}")
                dispatch_event(ApiCallSucceeded(endpoint=operation_id, rate_class=rate_class, latency_ms=0.0, from_cache=True))
                return cached

        if not self.breaker.can_proceed():
            count = self.breaker.get_count()
            logger.error(f"Refusing {operation_id}: error budget exhausted ({count} consecutive errors)")
            raise ErrorBudgetExceededError(count, self.breaker.max_errors)

        async def _body() -> Any:
            return await self._dispatch(operation_id, payload, rate_class)

        def _on_waiting(wait_ms: int, description: str) -> None:
            logger.info(f"Rate limit wait: {description} ({-(-wait_ms // 1000)}s)")

        dispatch_event(ApiCallInitiated(endpoint=operation_id, rate_class=rate_class))
        start_time = time.perf_counter()
        try:
            data = await self.rate_limiter.execute(rate_class, _body, _on_waiting)
        except GateError as e:
            dispatch_event(ApiCallFailed(endpoint=operation_id, rate_class=rate_class, error_type=type(e).__name__, error_message=e.message))
            raise
        latency_ms = (time.perf_counter() - start_time) * 1000
        dispatch_event(ApiCallSucceeded(endpoint=operation_id, rate_class=rate_class, latency_ms=latency_ms))

        if use_cache and data:
            self.cache.set_api_response(operation_id, key_params, data, is_single_query=is_high_frequency_read)
        return data

    async def try_call(self, operation_id: OperationId, payload: Payload, **options: Any) -> CallOutcome:
        """Same as call(), but returns a tagged outcome instead of raising."""
        try:
            return Ok(await self.call(operation_id, payload, **options))
        except GateError as e:
            return outcome_from_error(e)

    # --- Dispatch and classification ---

    async def _dispatch(self, operation_id: OperationId, payload: Payload, rate_class: RateClass) -> Any:
        session_id = await self._ensure_session()
        envelope = await self._post(operation_id, payload, rate_class, session_id)
        if is_session_expiry(envelope):
            return await self._retry_with_new_session(operation_id, payload, rate_class, envelope)
        if envelope.success:
            self.breaker.record_success()
            return envelope.data

        self._record_failure(operation_id, envelope)

    async def _retry_with_new_session(
        self,
        operation_id: OperationId,
        payload: Payload,
        rate_class: RateClass,
        expired: ApiEnvelope,
    ) -> Any:
        # Runs inside the rate window the first attempt already consumed.
        logger.warning(f"Session expired calling {operation_id}, retrying with a new session")
        dispatch_event(SessionRenewed(endpoint=operation_id, reason=expired.error_message or str(expired.error_code)))
        self.session_manager.clear_session()
        session_id = await self.session_manager.login()

        envelope = await self._post(operation_id, payload, rate_class, session_id)
        if envelope.success and not is_session_expiry(envelope):
            self.breaker.record_success()
            return envelope.data
        self._record_failure(operation_id, envelope)

    def _record_failure(self, operation_id: OperationId, envelope: ApiEnvelope) -> NoReturn:
        """Counts the failure against the error budget and raises UpstreamApiError."""
        self.breaker.record_error()
        message = envelope.error_message or "API call failed"
        logger.error(f"API error from {operation_id}: {message} (code={envelope.error_code})")
        raise UpstreamApiError(message, envelope.error_code, operation_id, envelope.raw)

    async def _post(self, operation_id: OperationId, payload: Payload, rate_class: RateClass, session_id: SessionId) -> ApiEnvelope:
        if self.retry_config is None:
            return await self._post_once(operation_id, payload, rate_class, session_id)
        return await with_retry(
            lambda: self._post_once(operation_id, payload, rate_class, session_id),
            should_retry=is_transient_error,
            config=self.retry_config,
            sleep=self._retry_sleep,
            endpoint=operation_id,
        )

    async def _post_once(self, operation_id: OperationId, payload: Payload, rate_class: RateClass, session_id: SessionId) -> ApiEnvelope:
        url = f"{self.session_manager.get_base_url()}{operation_id}?SESSION_ID={session_id}"
        logger.debug(f"API request: {operation_id} (rate_class={rate_class})")
        response = await self.transport.post_json(url, payload, timeout_s=BUSINESS_TIMEOUT_S, endpoint=operation_id)

        if response.status_code in THROTTLE_STATUS_CODES:
            wait_time_ms = self.rate_limiter.get_wait_time(rate_class)
            logger.warning(f"Upstream throttled {operation_id} with HTTP {response.status_code}")
            raise RateLimitExceededError.for_rate_class(rate_class, wait_time_ms)
        if not response.is_success:
            raise TransportError.http_error(response.status_code, operation_id)

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise TransportError.parse_error(operation_id) from e
        if not isinstance(body, dict):
            raise TransportError.parse_error(operation_id)
        return parse_api_envelope(body)

    # --- Introspection ---

    def rate_limit_status(self) -> Dict[str, Any]:
        return self.rate_limiter.get_status()

    def circuit_breaker_status(self) -> Dict[str, Any]:
        return self.breaker.get_status()

    def cache_status(self) -> Dict[str, int]:
        return self.cache.get_stats()

    def session_info(self) -> Dict[str, Any]:
        state = self.session_manager.get_state()
        return {
            "account_id": state.account_id,
            "zone": state.zone,
            "session_id": redact_session_id(state.session_id),
            "expires_at": state.expires_at,
            "is_valid": self.session_manager.is_session_valid,
        }

    def invalidate_cache(self, endpoint: Optional[str] = None) -> int:
        """Drops cached responses for one endpoint, or the whole cache."""
        if endpoint:
            removed = self.cache.invalidate_endpoint(endpoint)
        else:
            removed = self.cache.get_stats()["size"]
            self.cache.clear()
        logger.info(f"Invalidated {removed} cached entries ({endpoint or 'all'})")
        return removed

    async def test_connection(self) -> Dict[str, Any]:
        result = await self.session_manager.test_connection()
        if result["success"]:
            self._initialized = True
            return {
                "success": True,
                "zone": result.get("zone"),
                "session_id": redact_session_id(result.get("session_id")),
                "message": "Connection succeeded",
            }
        return {"success": False, "message": result.get("error") or "Connection failed"}
