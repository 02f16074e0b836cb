"""Query cache for place autocomplete results."""

from .service import InMemoryQueryCache, QueryCache

__all__ = ["InMemoryQueryCache", "QueryCache"]
