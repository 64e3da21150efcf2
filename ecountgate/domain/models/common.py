"""Defines common Value Objects used across the coordination layer.

These objects represent simple values like rate classes, cache keys and
session identifiers, ensuring consistency across modules.
"""

from typing import Any, Dict, NewType, TypedDict

# === Rate Limiting Context ===
RateClass = NewType("RateClass", str)          # Independent rate-limited operation family, e.g. 'save_product'
EpochMs = NewType("EpochMs", int)              # Wall-clock timestamp in milliseconds

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Unique key for a cache entry
CachePrefix = NewType("CachePrefix", str)      # Prefix for categorizing cache keys (e.g., 'api:')

# === Session Context ===
AccountId = NewType("AccountId", str)          # Company code the credentials belong to
Zone = NewType("Zone", str)                    # Routing designator, permanent per account
SessionId = NewType("SessionId", str)

# === Call Context ===
OperationId = NewType("OperationId", str)      # Endpoint path, e.g. '/OAPI/V2/Sale/SaveSale'
Payload = Dict[str, Any]


# --- Structured Data ---
class RateClassStatus(TypedDict):
    """Per-class snapshot returned by RateLimiter.get_status()."""
    can_call: bool
    wait_time_ms: int
    auto_wait: bool
    description: str

