"""Data models for the places search backend."""

from .core import (
    AutocompleteCall,
    BoundingBox,
    BundledRequest,
    CachedSuggestion,
    CacheStats,
    Coordinates,
    DetailsCall,
    ExpiredSessionRecord,
    PlacePrediction,
    SelectedLocation,
    SessionStats,
    SessionToken,
)
from .errors import (
    AppError,
    ErrorCode,
    PlacesAPIError,
    PlacesError,
    RequestCancelled,
    SessionTokenError,
)

__all__ = [
    "AutocompleteCall",
    "BoundingBox",
    "BundledRequest",
    "CachedSuggestion",
    "CacheStats",
    "Coordinates",
    "DetailsCall",
    "ExpiredSessionRecord",
    "PlacePrediction",
    "SelectedLocation",
    "SessionStats",
    "SessionToken",
    "AppError",
    "ErrorCode",
    "PlacesAPIError",
    "PlacesError",
    "RequestCancelled",
    "SessionTokenError",
]
