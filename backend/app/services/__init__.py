"""Places Search Services.

Service layer components:
- Cache: in-memory query cache with TTL expiry and bounded size
- Session Tokens: autocomplete session lifecycle, expiry sweep, cost estimates
- Places: Google Places autocomplete + details client (httpx)
- Search: debounced/throttled search orchestration per search box
"""

from .cache import InMemoryQueryCache, QueryCache
from .session_tokens import PlacesPricing, SessionTokenManager
from .places import (
    AutocompleteParams,
    DetailsParams,
    GooglePlacesClient,
    PlacesClient,
)
from .search import SearchOrchestrator, SearchOutcome, SearchState

__all__ = [
    # Cache
    "InMemoryQueryCache",
    "QueryCache",
    # Session tokens
    "PlacesPricing",
    "SessionTokenManager",
    # Places provider
    "AutocompleteParams",
    "DetailsParams",
    "GooglePlacesClient",
    "PlacesClient",
    # Search
    "SearchOrchestrator",
    "SearchOutcome",
    "SearchState",
]
