"""Query cache service implementation.

This module provides an abstract query cache interface and an in-memory
implementation that maps normalized search text to place suggestions.

- Keys are the trimmed, lower-cased query text.
- Suggestions expire ``ttl_seconds`` after they were cached. Expiry is lazy:
  reads filter stale suggestions and drop entries that end up empty.
- The number of entries is bounded. When the bound is exceeded the entries
  whose first suggestion is oldest are evicted (insertion age, not access age).
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Sequence

from app.models import CachedSuggestion, CacheStats, PlacePrediction

logger = logging.getLogger(__name__)


class QueryCache(ABC):
    """Abstract base class for place query caches.

    Defines the interface for get/set/has/clear on suggestion lists and the
    key normalization shared by all implementations.
    """

    @abstractmethod
    def get(self, query: str) -> list[CachedSuggestion] | None:
        """Retrieve non-expired suggestions for a query.

        Args:
            query: Raw query text (normalized before lookup).

        Returns:
            The cached suggestions in provider order, or None if absent.
        """
        pass

    @abstractmethod
    def set(self, query: str, suggestions: Sequence[PlacePrediction]) -> None:
        """Store suggestions for a query, replacing any prior entry.

        Args:
            query: Raw query text (normalized before storing).
            suggestions: Predictions in provider relevance order.
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop all entries."""
        pass

    @abstractmethod
    def get_stats(self) -> CacheStats:
        pass

    def has(self, query: str) -> bool:
        """Check whether ``get`` would return a non-empty list."""
        cached = self.get(query)
        return bool(cached)

    @staticmethod
    def normalize_key(query: str) -> str:
        """Generate the cache key for a query.

        Example:
            >>> QueryCache.normalize_key("  Paris ")
            'paris'
        """
        return query.strip().lower()


class InMemoryQueryCache(QueryCache):
    """Process-local query cache with TTL expiry and bounded size.

    Attributes:
        _entries: Normalized query -> cached suggestions.
        _ttl: Lifetime of a suggestion in seconds.
        _max_entries: Maximum number of cached queries.
    """

    def __init__(
        self,
        ttl_seconds: float = 86400,
        max_entries: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Suggestion lifetime. Defaults to 24 hours.
            max_entries: Maximum cached queries. Defaults to 100.
            clock: Time source in seconds.
        """
        self._entries: dict[str, list[CachedSuggestion]] = {}
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock

    def get(self, query: str) -> list[CachedSuggestion] | None:
        key = self.normalize_key(query)
        cached = self._entries.get(key)
        if cached is None:
            return None

        now = self._clock()
        valid = [s for s in cached if now - s.cached_at < self._ttl]
        if not valid:
            del self._entries[key]
            logger.info(f"[CACHE] Expired entry removed: '{key}'")
            return None

        self._entries[key] = valid
        return list(valid)

    def set(self, query: str, suggestions: Sequence[PlacePrediction]) -> None:
        key = self.normalize_key(query)
        now = self._clock()
        stamped = [
            CachedSuggestion(**s.model_dump(exclude={"cached_at"}), cached_at=now)
            for s in suggestions
        ]
        # Re-insert so a refreshed key also moves to the end of the table
        self._entries.pop(key, None)
        self._entries[key] = stamped
        self._evict()

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), queries=list(self._entries))

    def _evict(self) -> None:
        """Drop the oldest entries while the cache is over capacity."""
        excess = len(self._entries) - self._max_entries
        if excess <= 0:
            return

        oldest_first = sorted(
            self._entries,
            key=lambda k: self._entries[k][0].cached_at if self._entries[k] else 0,
        )
        for key in oldest_first[:excess]:
            del self._entries[key]
        logger.info(f"[CACHE] Evicted {excess} entries (max {self._max_entries})")

    @property
    def ttl_seconds(self) -> float:
        """Get the suggestion lifetime in seconds."""
        return self._ttl

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)
