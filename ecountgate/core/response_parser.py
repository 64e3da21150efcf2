"""Parsing of upstream response bodies.

The upstream is not consistent about where it puts things: the status may be
the number 200 or the string "200", the zone and the session id can sit at
several nesting paths. Every accepted shape is listed here as an ordered
tuple of extraction paths; the first path that yields a non-empty value wins.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

Path = Tuple[str, ...]

# Keys matched case-insensitively (ZONE, Zone, zone).
ZONE_PATHS: Sequence[Path] = (
    ("Data", "ZONE"),
    ("ZONE",),
)

SESSION_ID_PATHS: Sequence[Path] = (
    ("Data", "SESSION_ID"),
    ("Data", "Datas", "SESSION_ID"),
)

LOGIN_CODE_PATHS: Sequence[Path] = (
    ("Data", "Code"),
)

SESSION_EXPIRY_KEYWORDS = ("SESSION", "세션")
SESSION_EXPIRY_CODES = (401, "401")


@dataclass(frozen=True)
class LoginResult:
    session_id: str
    code: Optional[str] = None


@dataclass(frozen=True)
class ApiEnvelope:
    """A business response split into its success flag, payload and error."""
    success: bool
    data: Any = None
    error_code: Any = None
    error_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _lookup(node: Dict[str, Any], key: str, ignore_case: bool) -> Any:
    if key in node or not ignore_case:
        return node.get(key)
    folded = key.casefold()
    for candidate, value in node.items():
        if isinstance(candidate, str) and candidate.casefold() == folded:
            return value
    return None


def _at_path(body: Any, path: Path, ignore_case: bool = False) -> Any:
    node = body
    for key in path:
        if not isinstance(node, dict):
            return None
        node = _lookup(node, key, ignore_case)
    return node


def first_present(body: Any, paths: Sequence[Path], ignore_case: bool = False) -> Any:
    """Value at the first path that holds a non-empty value, else None."""
    for path in paths:
        value = _at_path(body, path, ignore_case)
        if value not in (None, ""):
            return value
    return None


def is_success_status(body: Any) -> bool:
    return isinstance(body, dict) and body.get("Status") in (200, "200")


def parse_zone(body: Any) -> Optional[str]:
    """Zone designator from a zone lookup response, or None on failure."""
    if not is_success_status(body):
        return None
    zone = first_present(body, ZONE_PATHS, ignore_case=True)
    return str(zone) if zone else None


def parse_login(body: Any) -> Optional[LoginResult]:
    """Session id from a login response, or None on failure.

    Success needs a 200 status and a session id; a "00" code alone is not
    enough since there would be nothing to authenticate with.
    """
    if not is_success_status(body):
        return None
    session_id = first_present(body, SESSION_ID_PATHS)
    if not session_id:
        return None
    code = first_present(body, LOGIN_CODE_PATHS)
    return LoginResult(session_id=str(session_id), code=str(code) if code is not None else None)


def parse_api_envelope(body: Dict[str, Any]) -> ApiEnvelope:
    """Splits a business response into success flag, payload and error.

    The `Error` object is read whatever the status, since the upstream can
    report an expired session next to a 200 status.
    """
    error = body.get("Error")
    if not isinstance(error, dict):
        error = {}
    message = error.get("Message")
    return ApiEnvelope(
        success=is_success_status(body),
        data=body.get("Data"),
        error_code=error.get("Code"),
        error_message=str(message) if message is not None else None,
        raw=body,
    )


def is_session_expiry(envelope: ApiEnvelope) -> bool:
    """True when the envelope's error reports an expired or invalid session."""
    message = envelope.error_message or ""
    if any(keyword in message for keyword in SESSION_EXPIRY_KEYWORDS):
        return True
    return envelope.error_code in SESSION_EXPIRY_CODES
