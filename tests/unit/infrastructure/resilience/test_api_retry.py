import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from ecountgate.domain.errors import (
    AuthenticationError,
    ErrorBudgetExceededError,
    GateError,
    RateLimitExceededError,
    TransportError,
    ValidationError,
)
from ecountgate.infrastructure.resilience.api_retry import (
    RetryConfig,
    calculate_delay,
    is_network_error,
    is_timeout_error,
    is_transient_error,
    with_retry,
)

NO_JITTER = RetryConfig(jitter_factor=0)


def test_delay_grows_exponentially_and_is_capped():
    assert calculate_delay(1, NO_JITTER) == 2000
    assert calculate_delay(2, NO_JITTER) == 4000
    assert calculate_delay(3, NO_JITTER) == 8000
    assert calculate_delay(4, NO_JITTER) == 8000


def test_delay_jitter_stays_within_bounds():
    config = RetryConfig()
    for _ in range(50):
        assert 1800 <= calculate_delay(1, config) <= 2200


def test_returns_first_success_without_sleeping(clock):
    fn = AsyncMock(return_value="ok")

    result = asyncio.run(with_retry(fn, should_retry=is_transient_error, sleep=clock.sleep))

    assert result == "ok"
    fn.assert_awaited_once()
    assert clock.sleeps == []


def test_retries_transient_errors_then_succeeds(clock):
    fn = AsyncMock(side_effect=[TransportError.http_error(503, "/x"), TransportError.network_error("/x"), "ok"])
    on_retry = MagicMock()

    result = asyncio.run(with_retry(fn, is_transient_error, config=NO_JITTER, on_retry=on_retry, sleep=clock.sleep))

    assert result == "ok"
    assert fn.await_count == 3
    assert clock.sleeps == [2.0, 4.0]
    assert [c.args[0].attempt for c in on_retry.call_args_list] == [1, 2]
    assert on_retry.call_args_list[0].args[0].delay_ms == 2000


def test_total_attempts_is_max_attempts_plus_one(clock):
    error = TransportError.http_error(500, "/x")
    fn = AsyncMock(side_effect=error)

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(with_retry(fn, is_transient_error, config=RetryConfig(max_attempts=2, jitter_factor=0), sleep=clock.sleep))

    assert exc_info.value is error
    assert fn.await_count == 3
    assert len(clock.sleeps) == 2


def test_non_transient_error_is_raised_immediately(clock):
    fn = AsyncMock(side_effect=ValidationError.required("PROD_CD"))

    with pytest.raises(ValidationError):
        asyncio.run(with_retry(fn, is_transient_error, sleep=clock.sleep))

    fn.assert_awaited_once()
    assert clock.sleeps == []


@pytest.mark.parametrize("error", [
    TransportError.http_error(500, "/x"),
    TransportError.http_error(504, "/x"),
    TransportError.timeout("/x", 180),
    TransportError.network_error("/x", ConnectionError("refused")),
    AuthenticationError.timeout("Login"),
    GateError("Timeout", "TIMEOUT"),
    asyncio.TimeoutError(),
    httpx.ConnectTimeout("slow"),
    httpx.ConnectError("dns"),
])
def test_transient_errors(error):
    assert is_transient_error(error)


@pytest.mark.parametrize("error", [
    TransportError.http_error(400, "/x"),
    TransportError.http_error(429, "/x"),
    TransportError.parse_error("/x"),
    RateLimitExceededError("limited", 5000, "save_product"),
    ValidationError.required("PROD_CD"),
    AuthenticationError.invalid_credentials(),
    ErrorBudgetExceededError(25),
    RuntimeError("generic"),
])
def test_non_transient_errors(error):
    assert not is_transient_error(error)


def test_timeout_and_network_classifiers_are_distinct():
    assert is_timeout_error(httpx.ReadTimeout("slow"))
    assert not is_network_error(httpx.ReadTimeout("slow"))
    assert is_network_error(TransportError.network_error("/x"))
    assert not is_network_error(TransportError.http_error(500, "/x"))
    assert not is_timeout_error(TransportError.http_error(500, "/x"))
