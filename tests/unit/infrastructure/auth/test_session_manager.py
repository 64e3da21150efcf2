import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from ecountgate.domain.errors import AuthenticationError, RateLimitExceededError, TransportError
from ecountgate.domain.models.session import SESSION_SAFETY_MARGIN_MS, SESSION_VALIDITY_MS, SessionState
from ecountgate.infrastructure.cache.caching_service import ApiResponseCache

ONE_SECOND_MS = 1000


def test_session_validity_boundary(clock):
    now = clock.now_ms()
    valid = SessionState("600000", "BB", "sid", now + SESSION_SAFETY_MARGIN_MS + ONE_SECOND_MS)
    stale = SessionState("600000", "BB", "sid", now + SESSION_SAFETY_MARGIN_MS - ONE_SECOND_MS)

    assert valid.is_valid_at(now)
    assert not stale.is_valid_at(now)
    assert not SessionState("600000", "BB", None, now + SESSION_VALIDITY_MS).is_valid_at(now)


def test_base_url_uses_lowercase_zone(make_session_manager):
    manager = make_session_manager()
    assert manager.get_base_url() == "https://oapi.ecount.com"
    manager.state.zone = "BB"
    assert manager.get_base_url() == "https://oapibb.ecount.com"

    test_manager = make_session_manager(use_test_server=True)
    assert test_manager.get_base_url() == "https://sboapi.ecount.com"
    test_manager.state.zone = "CC"
    assert test_manager.get_base_url() == "https://sboapicc.ecount.com"


def test_fetch_zone_posts_company_code_and_caches_permanently(make_session_manager, fake_upstream):
    manager = make_session_manager()

    zone = asyncio.run(manager.fetch_zone())

    assert zone == "BB"
    assert str(fake_upstream.requests[0].url) == "https://oapi.ecount.com/OAPI/V2/Zone"
    assert fake_upstream.body_of(0) == {"COM_CODE": "600000"}
    assert manager.cache.get_zone("600000") == "BB"
    assert not manager.rate_limiter.can_call("zone")


@pytest.mark.parametrize("body", [
    {"Status": 200, "Data": {"Zone": "BB"}},
    {"Status": "200", "ZONE": "BB"},
    {"Status": "200", "Zone": "BB"},
    {"Status": "200", "Data": {"zone": "BB"}},
])
def test_fetch_zone_accepts_alternative_shapes(make_session_manager, fake_upstream, body):
    fake_upstream.zone_response = (200, body)
    assert asyncio.run(make_session_manager().fetch_zone()) == "BB"


@pytest.mark.parametrize("response", [
    (500, {"Status": "500"}),
    (200, {"Status": "200", "Data": {}}),
    (200, {"Status": "400", "Data": {"ZONE": "BB"}}),
    (200, "not json"),
])
def test_fetch_zone_failures_raise_zone_not_found(make_session_manager, fake_upstream, response):
    fake_upstream.zone_response = response
    manager = make_session_manager()

    with pytest.raises(AuthenticationError) as exc_info:
        asyncio.run(manager.fetch_zone())

    assert exc_info.value.code == "ZONE_NOT_FOUND"
    assert manager.rate_limiter.can_call("zone")


def test_auth_timeout_becomes_authentication_timeout(make_session_manager, mocker):
    manager = make_session_manager()
    mocker.patch.object(manager.transport, "post_json", AsyncMock(side_effect=TransportError.timeout("Zone lookup", 30)))

    with pytest.raises(AuthenticationError) as exc_info:
        asyncio.run(manager.fetch_zone())

    assert exc_info.value.code == "TIMEOUT"


def test_login_fetches_zone_then_posts_credentials(make_session_manager, fake_upstream, clock):
    manager = make_session_manager()

    session_id = asyncio.run(manager.login())

    assert session_id == "session-0001-abcdefgh"
    assert fake_upstream.paths() == ["/OAPI/V2/Zone", "/OAPI/V2/OAPILogin"]
    assert str(fake_upstream.requests[1].url) == "https://oapibb.ecount.com/OAPI/V2/OAPILogin"
    assert fake_upstream.body_of(1) == {
        "COM_CODE": "600000",
        "USER_ID": "API_USER",
        "API_CERT_KEY": "cert-key",
        "LAN_TYPE": "ko-KR",
        "ZONE": "BB",
    }
    assert manager.expires_at == clock.now_ms() + SESSION_VALIDITY_MS
    assert manager.is_session_valid
    assert manager.cache.get_session("600000")["session_id"] == session_id


def test_login_accepts_session_id_directly_under_data(make_session_manager, fake_upstream):
    fake_upstream.login_responses = [(200, {"Status": 200, "Data": {"SESSION_ID": "direct-session"}})]
    assert asyncio.run(make_session_manager().login()) == "direct-session"


@pytest.mark.parametrize("response", [
    (200, {"Status": "200", "Data": {"Code": "00"}}),
    (200, {"Status": "500", "Data": {"SESSION_ID": "sid"}}),
    (401, {"Status": "401"}),
])
def test_login_failures_raise_invalid_credentials(make_session_manager, fake_upstream, response):
    fake_upstream.login_responses = [response]
    manager = make_session_manager()

    with pytest.raises(AuthenticationError) as exc_info:
        asyncio.run(manager.login())

    assert exc_info.value.code == "INVALID_CREDENTIALS"
    assert manager.session_id is None


def test_second_login_within_window_is_rate_limited_in_production(make_session_manager):
    manager = make_session_manager()
    asyncio.run(manager.login())

    with pytest.raises(RateLimitExceededError) as exc_info:
        asyncio.run(manager.login())

    assert exc_info.value.rate_class == "login"


def test_ensure_session_reuses_valid_session(make_session_manager, fake_upstream):
    manager = make_session_manager()
    first = asyncio.run(manager.ensure_session())
    second = asyncio.run(manager.ensure_session())

    assert first == second
    assert fake_upstream.login_count == 1


def test_ensure_session_relogs_when_inside_safety_margin(make_session_manager, fake_upstream, clock):
    manager = make_session_manager(use_test_server=True)
    asyncio.run(manager.login())
    clock.advance_ms(SESSION_VALIDITY_MS - SESSION_SAFETY_MARGIN_MS)

    session_id = asyncio.run(manager.ensure_session())

    assert session_id == "session-0002-abcdefgh"
    assert fake_upstream.login_count == 2


def test_clear_session_keeps_zone(make_session_manager):
    manager = make_session_manager()
    asyncio.run(manager.login())

    manager.clear_session()

    assert manager.zone == "BB"
    assert manager.session_id is None
    assert manager.cache.get_session("600000") is None
    assert not manager.is_session_valid


# --- Session file ---

def test_login_writes_session_file(make_session_manager, tmp_path, clock):
    session_file = tmp_path / "session.json"
    manager = make_session_manager(session_file_path=session_file)

    session_id = asyncio.run(manager.login())

    assert json.loads(session_file.read_text()) == {
        "accountId": "600000",
        "zone": "BB",
        "sessionId": session_id,
        "expiresAt": clock.now_ms() + SESSION_VALIDITY_MS,
        "savedAt": clock.now_ms(),
    }


def test_initialize_restores_session_from_file_without_network(make_session_manager, fake_upstream, tmp_path, clock):
    session_file = tmp_path / "session.json"
    session_file.write_text(json.dumps({
        "accountId": "600000",
        "zone": "CC",
        "sessionId": "persisted-session",
        "expiresAt": clock.now_ms() + 60 * 60 * 1000,
        "savedAt": clock.now_ms(),
    }))
    manager = make_session_manager(session_file_path=session_file)

    asyncio.run(manager.initialize())

    assert fake_upstream.requests == []
    assert manager.zone == "CC"
    assert manager.session_id == "persisted-session"
    assert manager.cache.get_zone("600000") == "CC"
    assert manager.cache.get_session("600000")["session_id"] == "persisted-session"


def test_session_file_for_another_account_is_ignored(make_session_manager, fake_upstream, tmp_path, clock):
    session_file = tmp_path / "session.json"
    session_file.write_text(json.dumps({
        "accountId": "999999",
        "zone": "CC",
        "sessionId": "foreign-session",
        "expiresAt": clock.now_ms() + 60 * 60 * 1000,
        "savedAt": clock.now_ms(),
    }))
    manager = make_session_manager(session_file_path=session_file)

    asyncio.run(manager.initialize())

    assert manager.session_id is None
    assert manager.zone == "BB"
    assert fake_upstream.paths() == ["/OAPI/V2/Zone"]


def test_expired_session_file_still_provides_zone(make_session_manager, fake_upstream, tmp_path, clock):
    session_file = tmp_path / "session.json"
    session_file.write_text(json.dumps({
        "accountId": "600000",
        "zone": "CC",
        "sessionId": "old-session",
        "expiresAt": clock.now_ms() - 1,
        "savedAt": clock.now_ms() - SESSION_VALIDITY_MS,
    }))
    manager = make_session_manager(session_file_path=session_file)

    asyncio.run(manager.initialize())

    assert manager.zone == "CC"
    assert manager.session_id is None
    assert fake_upstream.requests == []


def test_initialize_uses_cached_session(make_session_manager, fake_upstream, clock):
    cache = ApiResponseCache(clock=clock)
    cache.set_zone("600000", "BB")
    cache.set_session("600000", "cached-session", clock.now_ms() + 60 * 60 * 1000)
    manager = make_session_manager(cache=cache)

    asyncio.run(manager.initialize())

    assert manager.session_id == "cached-session"
    assert fake_upstream.requests == []


def test_initialize_fetches_zone_when_nothing_is_stored(make_session_manager, fake_upstream):
    manager = make_session_manager()

    asyncio.run(manager.initialize())

    assert manager.zone == "BB"
    assert manager.session_id is None
    assert fake_upstream.paths() == ["/OAPI/V2/Zone"]


def test_test_connection_reports_failure_instead_of_raising(make_session_manager, fake_upstream):
    fake_upstream.login_responses = [(200, {"Status": "500"})]
    manager = make_session_manager()

    result = asyncio.run(manager.test_connection())

    assert result["success"] is False
    assert "Invalid credentials" in result["error"]


def test_test_connection_success(make_session_manager):
    result = asyncio.run(make_session_manager().test_connection())
    assert result == {"success": True, "zone": "BB", "session_id": "session-0001-abcdefgh"}
