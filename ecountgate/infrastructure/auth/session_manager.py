"""Session lifecycle for the upstream account.

Resolves the account's zone, logs in to obtain a session id, keeps the
session in the response cache and optionally in a JSON file so it survives
process restarts, and renews it when it is about to expire.

Both the zone lookup and the login are rate limited (one call per ten
minutes in production), so every path here prefers reuse over a fresh call.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

# Domain Layer Imports
from ecountgate.domain.errors import AuthenticationError, GateError
from ecountgate.domain.models.common import AccountId, EpochMs, RateClass, SessionId, Zone
from ecountgate.domain.models.session import SESSION_VALIDITY_MS, SessionState

# Core Layer Imports
from ecountgate.core.response_parser import parse_login, parse_zone

# Infrastructure Layer Imports
from ecountgate.infrastructure.cache.caching_service import ApiResponseCache
from ecountgate.infrastructure.filesystem.json_state import JsonStateFile, StatePath
from ecountgate.infrastructure.http.transport import AUTH_TIMEOUT_S, HttpTransport
from ecountgate.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

PRODUCTION_ZONE_HOST = "https://oapi.ecount.com"
TEST_ZONE_HOST = "https://sboapi.ecount.com"
ZONE_PATH = "/OAPI/V2/Zone"
LOGIN_PATH = "/OAPI/V2/OAPILogin"
LANGUAGE_TYPE = "ko-KR"


class SessionManager:
    """Acquires, renews and persists the session for one account.

    States: no zone, zone known, authenticated, expired or cleared. Clearing
    drops the session but keeps the zone, which never changes per account.
    """

    def __init__(
        self,
        com_code: AccountId,
        user_id: str,
        api_cert_key: str,
        cache: ApiResponseCache,
        rate_limiter: RateLimiter,
        transport: HttpTransport,
        use_test_server: bool = False,
        session_file_path: Optional[StatePath] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the SessionManager.

        Args:
            com_code: Company code; also the account id for cache and file keys.
            user_id: API user id.
            api_cert_key: API certificate key.
            cache: Response cache holding the zone and session records.
            rate_limiter: Limiter gating the `zone` and `login` classes.
            transport: HTTP transport used for both auth calls.
            use_test_server: Route to the sandbox hosts.
            session_file_path: Optional JSON file to persist the session in.
            clock: Wall-clock source in seconds.
        """
        self.com_code = com_code
        self.user_id = user_id
        self.api_cert_key = api_cert_key
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.transport = transport
        self.use_test_server = use_test_server
        self._session_file = JsonStateFile(session_file_path) if session_file_path else None
        self._clock = clock
        self.state = SessionState(account_id=com_code)

    def _now_ms(self) -> EpochMs:
        return EpochMs(int(round(self._clock() * 1000)))

    # --- Accessors ---

    @property
    def zone(self) -> Optional[Zone]:
        return self.state.zone

    @property
    def session_id(self) -> Optional[SessionId]:
        return self.state.session_id

    @property
    def expires_at(self) -> Optional[EpochMs]:
        return self.state.expires_at

    @property
    def is_session_valid(self) -> bool:
        return self.state.is_valid_at(self._now_ms())

    def get_base_url(self) -> str:
        zone = self.state.zone.lower() if self.state.zone else None
        if self.use_test_server:
            return f"https://sboapi{zone}.ecount.com" if zone else TEST_ZONE_HOST
        return f"https://oapi{zone}.ecount.com" if zone else PRODUCTION_ZONE_HOST

    def get_state(self) -> SessionState:
        return SessionState(
            account_id=self.state.account_id,
            zone=self.state.zone,
            session_id=self.state.session_id,
            expires_at=self.state.expires_at,
        )

    # --- Lifecycle ---

    async def initialize(self) -> None:
        """Restores stored state, then fetches the zone if it is still unknown.

        Never logs in.
        """
        logger.info("Initializing session manager")
        if await self.restore():
            return
        if not self.state.zone:
            await self.fetch_zone()
        logger.info(f"Session manager initialized (zone={self.state.zone}, has_session={bool(self.state.session_id)})")

    async def restore(self) -> bool:
        """Adopts zone and session from cache and file without any network call.

        Order: cached zone, session file, cached session. Returns True when a
        session was adopted.
        """
        cached_zone = self.cache.get_zone(self.com_code)
        if cached_zone:
            self.state.zone = cached_zone
            logger.debug(f"Zone loaded from cache: {cached_zone}")

        if self._session_file is not None:
            loaded = await self._load_session_file()
            if loaded and self.is_session_valid:
                logger.info("Session restored from file")
                return True

        cached_session = self.cache.get_session(self.com_code)
        if cached_session and self._now_ms() < cached_session["expires_at"]:
            self.state.session_id = cached_session["session_id"]
            self.state.expires_at = cached_session["expires_at"]
            logger.debug("Session loaded from cache")
            return True
        return False

    async def fetch_zone(self) -> Zone:
        """Looks up the zone under the `zone` rate class and caches it permanently.

        Raises:
            AuthenticationError: ZONE_NOT_FOUND or TIMEOUT.
            RateLimitExceededError: If the zone window is closed.
        """
        logger.info("Fetching zone info")
        host = TEST_ZONE_HOST if self.use_test_server else PRODUCTION_ZONE_HOST

        async def _lookup() -> Zone:
            body = await self._post_auth(f"{host}{ZONE_PATH}", {"COM_CODE": self.com_code}, "Zone lookup")
            if body is None:
                raise AuthenticationError.zone_not_found()
            zone = parse_zone(body)
            if not zone:
                logger.error(f"Zone lookup failed: {body}")
                raise AuthenticationError.zone_not_found()
            return Zone(zone)

        zone = await self.rate_limiter.execute(RateClass("zone"), _lookup)
        self.state.zone = zone
        self.cache.set_zone(self.com_code, zone)
        logger.info(f"Zone fetched successfully: {zone}")
        return zone

    async def login(self) -> SessionId:
        """Logs in under the `login` rate class and persists the new session.

        Raises:
            AuthenticationError: INVALID_CREDENTIALS, ZONE_NOT_FOUND or TIMEOUT.
            RateLimitExceededError: If the login window is closed.
        """
        logger.info("Logging in")
        if not self.state.zone:
            await self.fetch_zone()

        async def _login() -> SessionId:
            body = await self._post_auth(
                f"{self.get_base_url()}{LOGIN_PATH}",
                {
                    "COM_CODE": self.com_code,
                    "USER_ID": self.user_id,
                    "API_CERT_KEY": self.api_cert_key,
                    "LAN_TYPE": LANGUAGE_TYPE,
                    "ZONE": self.state.zone,
                },
                "Login",
            )
            if body is None:
                raise AuthenticationError.invalid_credentials()
            result = parse_login(body)
            if result is None:
                logger.error(f"Login failed (status={body.get('Status')})")
                raise AuthenticationError.invalid_credentials()
            return SessionId(result.session_id)

        session_id = await self.rate_limiter.execute(RateClass("login"), _login)
        self.state.session_id = session_id
        self.state.expires_at = EpochMs(self._now_ms() + SESSION_VALIDITY_MS)
        self.cache.set_session(self.com_code, session_id, self.state.expires_at)
        await self._save_session_file()
        logger.info("Login successful")
        return session_id

    async def ensure_session(self) -> SessionId:
        """Returns a usable session id, logging in if the current one is stale."""
        if self.is_session_valid:
            return self.state.session_id
        logger.info("Session invalid or expired, re-authenticating")
        self.clear_session()
        return await self.login()

    def clear_session(self) -> None:
        self.state.session_id = None
        self.state.expires_at = None
        self.cache.clear_session(self.com_code)
        logger.debug("Session cleared")

    async def test_connection(self) -> Dict[str, Any]:
        """Initializes and ensures a session, reporting failure instead of raising."""
        try:
            await self.initialize()
            session_id = await self.ensure_session()
        except GateError as e:
            logger.warning(f"Connection test failed: {e}")
            return {"success": False, "error": e.message}
        return {"success": True, "zone": self.state.zone, "session_id": session_id}

    # --- Internals ---

    async def _post_auth(self, url: str, body: Dict[str, Any], operation: str) -> Optional[Dict[str, Any]]:
        """POSTs an auth request. Returns the JSON body, or None on a non-OK response."""
        try:
            response = await self.transport.post_json(url, body, timeout_s=AUTH_TIMEOUT_S, endpoint=operation)
        except GateError as e:
            if e.code == "TIMEOUT":
                raise AuthenticationError.timeout(operation) from e
            raise
        if not response.is_success:
            logger.error(f"{operation} returned HTTP {response.status_code}")
            return None
        try:
            data = response.json()
        except json.JSONDecodeError:
            logger.error(f"{operation} returned a body that is not JSON")
            return None
        return data if isinstance(data, dict) else None

    async def _load_session_file(self) -> bool:
        data = await self._session_file.read()
        if not data:
            logger.debug("No session file found or invalid")
            return False
        if data.get("accountId") != self.com_code:
            logger.debug("Session file belongs to another account; ignoring it")
            return False

        zone = data.get("zone")
        if zone:
            self.state.zone = zone
            self.cache.set_zone(self.com_code, zone)

        session_id = data.get("sessionId")
        expires_at = data.get("expiresAt")
        if not session_id or not isinstance(expires_at, int) or self._now_ms() >= expires_at:
            logger.debug("Session file holds no live session")
            return False

        self.state.session_id = session_id
        self.state.expires_at = expires_at
        if self.is_session_valid:
            self.cache.set_session(self.com_code, session_id, expires_at)
        logger.debug(f"Session loaded from file (zone={zone}, expires_at={expires_at})")
        return True

    async def _save_session_file(self) -> None:
        if self._session_file is None or not self.state.zone or not self.state.session_id:
            return
        try:
            await self._session_file.write(self.state.to_file_dict(saved_at=self._now_ms()))
        except OSError as e:
            logger.warning(f"Failed to save session file {self._session_file.path}: {e}")
