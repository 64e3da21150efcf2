"""Error taxonomy for the coordination layer.

Every error raised by the core derives from GateError and carries a flat
human-readable message, a machine-readable code and structured details, so
the outer tool layer can always stringify or serialize it safely.
"""

from typing import Any, Dict, Optional


class GateError(Exception):
    """Base error for everything raised by ecountgate."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable representation (name, message, code, details)."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }

    def __str__(self) -> str:
        return self.message


class AuthenticationError(GateError):
    """Zone lookup failure, invalid credentials or an auth timeout."""

    @classmethod
    def timeout(cls, operation: str) -> "AuthenticationError":
        return cls(f"{operation} request timed out. Check the network connection.", "TIMEOUT")

    @classmethod
    def invalid_credentials(cls) -> "AuthenticationError":
        return cls(
            "Invalid credentials. Check the company code, user ID and API certificate key.",
            "INVALID_CREDENTIALS",
        )

    @classmethod
    def zone_not_found(cls) -> "AuthenticationError":
        return cls("Zone could not be resolved. Check the company code.", "ZONE_NOT_FOUND")


class RateLimitExceededError(GateError):
    """Raised when a rate class window is closed and waiting is not allowed.

    Also raised when the upstream transport itself signals throttling
    (HTTP 302/412).
    """

    def __init__(self, message: str, wait_time_ms: int, rate_class: str):
        super().__init__(message, "RATE_LIMIT_EXCEEDED", {"wait_time_ms": wait_time_ms, "rate_class": rate_class})
        self.wait_time_ms = wait_time_ms
        self.rate_class = rate_class

    @classmethod
    def for_rate_class(cls, rate_class: str, wait_time_ms: int, description: Optional[str] = None) -> "RateLimitExceededError":
        wait_seconds = -(-wait_time_ms // 1000)  # ceil
        label = description or rate_class
        return cls(
            f"Rate limit exceeded ({label}). Retry possible in {wait_seconds}s.",
            wait_time_ms,
            rate_class,
        )


class TransportError(GateError):
    """HTTP status, network failure, unparsable body or request timeout."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        code: str = "API_CALL_ERROR",
    ):
        super().__init__(message, code, {"status_code": status_code, "endpoint": endpoint})
        self.status_code = status_code
        self.endpoint = endpoint

    @classmethod
    def http_error(cls, status_code: int, endpoint: str) -> "TransportError":
        return cls(f"HTTP {status_code} error returned by {endpoint}.", status_code, endpoint)

    @classmethod
    def network_error(cls, endpoint: str, cause: Optional[BaseException] = None) -> "TransportError":
        reason = str(cause) if cause is not None and str(cause) else "Unknown"
        return cls(f"Network error calling {endpoint}: {reason}", None, endpoint, code="NETWORK_ERROR")

    @classmethod
    def parse_error(cls, endpoint: str) -> "TransportError":
        return cls(
            f"Could not parse the response from {endpoint}. Unexpected response format.",
            None,
            endpoint,
            code="PARSE_ERROR",
        )

    @classmethod
    def timeout(cls, endpoint: str, timeout_s: float) -> "TransportError":
        return cls(f"Request timed out after {timeout_s:g}s: {endpoint}", None, endpoint, code="TIMEOUT")


class ValidationError(GateError):
    """Malformed input: required field missing or wrong format."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message, "VALIDATION_ERROR", {"field": field, "value": value})
        self.field = field
        self.value = value

    @classmethod
    def required(cls, field: str) -> "ValidationError":
        return cls(f"Required field is missing: {field}", field)

    @classmethod
    def invalid_format(cls, field: str, expected: str, value: Any = None) -> "ValidationError":
        return cls(f"Invalid format for {field} (expected: {expected})", field, value)


class ErrorBudgetExceededError(GateError):
    """Consecutive-failure guard tripped."""

    def __init__(self, error_count: int, max_errors: int = 30):
        super().__init__(
            f"Approaching the consecutive error limit ({max_errors}). "
            f"Current count: {error_count}. Wait before trying again.",
            "ERROR_LIMIT_EXCEEDED",
            {"error_count": error_count, "max_errors": max_errors},
        )
        self.error_count = error_count


class UpstreamApiError(GateError):
    """The upstream answered HTTP 200 but reported failure in the JSON body."""

    def __init__(self, message: str, api_code: Any = None, endpoint: Optional[str] = None, response: Any = None):
        super().__init__(
            message,
            str(api_code) if api_code is not None else "API_ERROR",
            {"endpoint": endpoint, "response": response},
        )
        self.api_code = api_code
        self.endpoint = endpoint


# --- Helpers ---

def format_error_message(error: Any) -> str:
    """User-facing message for any raised value."""
    if isinstance(error, GateError):
        return error.message
    return str(error)
