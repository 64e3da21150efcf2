"""Interface for the response cache.

Defines the contract for storing and retrieving values with a TTL, which
the session manager and the coordinator depend on.
"""

import abc
from typing import Any, Dict, Optional

from ..models.common import CacheKey, CachePrefix


class CacheService(abc.ABC):
    """Abstract Base Class for key/value caches with expiry."""

    @abc.abstractmethod
    def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves an item from the cache.

        Args:
            key: The unique key for the cached item.

        Returns:
            The cached value, or None if not found or expired.
        """
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, value: Any, ttl_ms: Optional[int] = None) -> None:
        """Stores an item in the cache.

        Args:
            key: The unique key for the item.
            value: The value to store.
            ttl_ms: Time-to-live in milliseconds (uses the default if None).
        """
        pass

    @abc.abstractmethod
    def has(self, key: CacheKey) -> bool:
        """True if the key holds an unexpired entry."""
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> bool:
        """Deletes an item. Returns True if something was removed."""
        pass

    @abc.abstractmethod
    def delete_by_prefix(self, prefix: CachePrefix) -> int:
        """Deletes every key starting with prefix. Returns the count removed."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Clears all items from the cache."""
        pass

    @abc.abstractmethod
    def cleanup(self) -> int:
        """Removes expired entries. Returns the count removed."""
        pass

    @abc.abstractmethod
    def get_stats(self) -> Dict[str, int]:
        """Returns {'size': ..., 'max_size': ...}."""
        pass
