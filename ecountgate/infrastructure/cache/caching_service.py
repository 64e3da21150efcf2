"""Concrete implementation of the response cache.

Manages an in-memory cache with per-entry TTL, lazy expiry on access, a
periodic sweep, and size-bounded eviction of the oldest inserted entry.
ApiResponseCache wraps it with namespaced keys and per-purpose TTLs.
"""

import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

# Domain Layer Imports
from ecountgate.domain.interfaces.cache import CacheService
from ecountgate.domain.models.common import AccountId, CacheKey, CachePrefix, EpochMs, OperationId, SessionId, Zone

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 1000
DEFAULT_TTL_MS = 10 * 60 * 1000  # 10 minutes
DEFAULT_CLEANUP_INTERVAL_S = 5 * 60


@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    value: Any
    created_at: int  # epoch ms
    expires_at: int  # epoch ms


class ResponseCache(CacheService):
    """Time-boxed key/value store.

    Eviction removes the first key in dict order, i.e. the oldest insertion.
    Overwriting an existing key keeps its original position, so this is an
    approximation of LRU rather than a recency-ordered one.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_ITEMS,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.time,
    ):
        if max_size <= 0:
            raise ValueError("Cache max_size must be positive.")
        self._entries: Dict[str, CacheEntry] = {}
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None
        logger.debug(f"ResponseCache initialized (max_size={max_size}, default_ttl_ms={default_ttl_ms})")

    def _now_ms(self) -> int:
        return int(round(self._clock() * 1000))

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._now_ms() > entry.expires_at:
            del self._entries[key]
            logger.debug(f"Cache expired for key: {key}")
            return None
        return entry

    # --- CacheService Interface Implementation ---

    def get(self, key: CacheKey) -> Optional[Any]:
        entry = self._live_entry(key)
        if entry is None:
            return None
        logger.debug(f"Cache hit for key: {key}")
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl_ms: Optional[int] = None) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            logger.debug(f"Cache evicted oldest entry: {oldest_key}")

        now = self._now_ms()
        effective_ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + effective_ttl)
        logger.debug(f"Stored item in cache: key={key}, ttl_ms={effective_ttl}")

    def has(self, key: CacheKey) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: CacheKey) -> bool:
        if key in self._entries:
            del self._entries[key]
            logger.debug(f"Deleted item from cache: key={key}")
            return True
        return False

    def delete_by_prefix(self, prefix: CachePrefix) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        if doomed:
            logger.debug(f"Deleted {len(doomed)} cache entries with prefix '{prefix}'")
        return len(doomed)

    def clear(self) -> None:
        size = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared response cache ({size} entries removed).")

    def cleanup(self) -> int:
        now = self._now_ms()
        expired_keys = [k for k, v in self._entries.items() if now > v.expires_at]
        for k in expired_keys:
            del self._entries[k]
        if expired_keys:
            logger.debug(f"Cache cleanup removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    def get_stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "max_size": self.max_size}

    # --- Periodic sweep ---

    def start_periodic_cleanup(self, interval_s: float = DEFAULT_CLEANUP_INTERVAL_S) -> asyncio.Task:
        """Starts a background task calling cleanup() every interval_s seconds.

        Must be called from inside a running event loop.
        """
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        async def _sweep() -> None:
            while True:
                await asyncio.sleep(interval_s)
                self.cleanup()

        self._cleanup_task = asyncio.get_running_loop().create_task(_sweep())
        logger.debug(f"Periodic cache cleanup started (every {interval_s}s)")
        return self._cleanup_task

    async def stop_periodic_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Periodic cache cleanup stopped")


class ApiResponseCache:
    """Cache facade with namespaced keys and per-purpose TTLs."""

    TTL_PERMANENT_MS = sys.maxsize
    TTL_QUERY_MS = 10 * 60 * 1000          # bulk query results
    TTL_QUERY_SINGLE_MS = 60 * 1000        # single-item lookups

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        max_size: int = 500,
        query_ttl_ms: int = TTL_QUERY_MS,
        clock: Callable[[], float] = time.time,
    ):
        self.query_ttl_ms = query_ttl_ms
        self.cache = cache or ResponseCache(max_size=max_size, default_ttl_ms=query_ttl_ms, clock=clock)
        self._clock = clock

    @staticmethod
    def create_key(endpoint: OperationId, params: Optional[Dict[str, Any]] = None) -> CacheKey:
        """Builds `api:<endpoint>:<params JSON with sorted keys>`.

        Equivalent parameter dicts map to the same key regardless of order.
        """
        param_str = json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str) if params else ""
        return CacheKey(f"api:{endpoint}:{param_str}")

    # Zone (permanent)
    def get_zone(self, account_id: AccountId) -> Optional[Zone]:
        return self.cache.get(CacheKey(f"zone:{account_id}"))

    def set_zone(self, account_id: AccountId, zone: Zone) -> None:
        self.cache.set(CacheKey(f"zone:{account_id}"), zone, self.TTL_PERMANENT_MS)

    # Session (TTL derived from its expiry)
    def get_session(self, account_id: AccountId) -> Optional[Dict[str, Any]]:
        return self.cache.get(CacheKey(f"session:{account_id}"))

    def set_session(self, account_id: AccountId, session_id: SessionId, expires_at: EpochMs) -> None:
        ttl = expires_at - int(round(self._clock() * 1000))
        if ttl > 0:
            self.cache.set(CacheKey(f"session:{account_id}"), {"session_id": session_id, "expires_at": expires_at}, ttl)

    def clear_session(self, account_id: AccountId) -> None:
        self.cache.delete(CacheKey(f"session:{account_id}"))

    # API responses
    def get_api_response(self, endpoint: OperationId, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        return self.cache.get(self.create_key(endpoint, params))

    def set_api_response(
        self,
        endpoint: OperationId,
        params: Optional[Dict[str, Any]],
        data: Any,
        is_single_query: bool = False,
    ) -> None:
        ttl = self.TTL_QUERY_SINGLE_MS if is_single_query else self.query_ttl_ms
        self.cache.set(self.create_key(endpoint, params), data, ttl)

    def invalidate_endpoint(self, endpoint: OperationId) -> int:
        return self.cache.delete_by_prefix(CachePrefix(f"api:{endpoint}:"))

    def clear(self) -> None:
        self.cache.clear()

    def cleanup(self) -> int:
        return self.cache.cleanup()

    def get_stats(self) -> Dict[str, int]:
        return self.cache.get_stats()
