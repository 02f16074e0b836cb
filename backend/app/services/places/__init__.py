"""Places provider client.

Provides Google Places autocomplete and place details over httpx, with
structured request parameters and cancellation of superseded requests.
"""

from .service import (
    AutocompleteParams,
    AutocompleteResult,
    DetailsParams,
    GooglePlacesClient,
    PlaceDetailsResult,
    PlacesClient,
)

__all__ = [
    "AutocompleteParams",
    "AutocompleteResult",
    "DetailsParams",
    "GooglePlacesClient",
    "PlaceDetailsResult",
    "PlacesClient",
]
