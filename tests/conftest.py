import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from typer.testing import CliRunner

from ecountgate.infrastructure.auth.session_manager import SessionManager
from ecountgate.infrastructure.cache.caching_service import ApiResponseCache
from ecountgate.infrastructure.config.settings import clear_test_config
from ecountgate.infrastructure.http.transport import HttpTransport
from ecountgate.infrastructure.resilience.rate_limiter import RateLimiter

START_TIME_S = 1_700_000_000.0


class FakeClock:
    """Wall clock under test control. sleep() advances it instead of waiting."""

    def __init__(self, start: float = START_TIME_S):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def now_ms(self) -> int:
        return int(round(self.now * 1000))

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeUpstream:
    """In-process stand-in for the upstream OpenAPI, served through httpx.MockTransport.

    Zone and login answer successfully by default. Business endpoints answer
    from a per-path queue of (status_code, body) pairs; the last entry repeats.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.zone_response = (200, {"Status": "200", "Data": {"ZONE": "BB"}})
        self.login_responses: List[Any] = []
        self.login_count = 0
        self.responses: Dict[str, List[Any]] = {}

    def queue(self, path: str, *responses: Any) -> None:
        self.responses.setdefault(path, []).extend(responses)

    def _next(self, queue: List[Any]) -> Any:
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def body_of(self, index: int) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/OAPI/V2/Zone":
            status, body = self.zone_response
        elif path == "/OAPI/V2/OAPILogin":
            self.login_count += 1
            if self.login_responses:
                status, body = self._next(self.login_responses)
            else:
                session_id = f"session-{self.login_count:04d}-abcdefgh"
                status, body = 200, {"Status": "200", "Data": {"Datas": {"SESSION_ID": session_id}, "Code": "00"}}
        elif path in self.responses:
            status, body = self._next(self.responses[path])
        else:
            status, body = 404, {"Status": "404"}
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def transport(fake_upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_upstream.handler))
    return HttpTransport(client=client)


@pytest.fixture
def make_session_manager(clock, transport) -> Callable[..., SessionManager]:
    """Builds a SessionManager wired to the fake upstream and fake clock."""

    def _make(
        use_test_server: bool = False,
        session_file_path: Optional[str] = None,
        cache: Optional[ApiResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        com_code: str = "600000",
    ) -> SessionManager:
        return SessionManager(
            com_code=com_code,
            user_id="API_USER",
            api_cert_key="cert-key",
            cache=cache or ApiResponseCache(clock=clock),
            rate_limiter=rate_limiter or RateLimiter(use_test_server=use_test_server, clock=clock, sleep=clock.sleep),
            transport=transport,
            use_test_server=use_test_server,
            session_file_path=session_file_path,
            clock=clock,
        )

    return _make


@pytest.fixture(autouse=True)
def isolated_config():
    """Test overrides from one test must not leak into the next."""
    clear_test_config()
    yield
    clear_test_config()
