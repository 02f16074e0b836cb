"""Runtime configuration for the places search backend.

Values come from the environment (a local ``.env`` file is loaded first).
Every tunable of the cache, session manager and search pipeline lives here so
hosts and tests can build isolated instances with their own settings.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class PlacesSettings(BaseModel):
    """Configuration surface for places search."""

    google_maps_api_key: str = ""
    autocomplete_url: str = "https://maps.googleapis.com/maps/api/place/autocomplete/json"
    details_url: str = "https://maps.googleapis.com/maps/api/place/details/json"
    language: str = "en"
    result_types: str = "address"
    request_timeout_seconds: float = Field(10.0, gt=0)

    # Query cache
    cache_ttl_seconds: float = Field(86400, gt=0)
    max_cache_entries: int = Field(100, ge=1)

    # Search pipeline
    min_query_length: int = Field(3, ge=1)
    debounce_ms: int = Field(800, ge=0)
    throttle_ms: int = Field(1000, ge=0)
    search_radius_km: float = Field(50.0, gt=0)
    strict_bounds: bool = True

    # Session tokens
    session_timeout_seconds: float = Field(300, gt=0)
    sweep_interval_seconds: float = Field(60, gt=0)
    autocomplete_price: float = Field(0.00283, ge=0)
    details_price: float = Field(0.017, ge=0)

    @classmethod
    def from_env(cls) -> "PlacesSettings":
        """Build settings from environment variables, falling back to defaults."""
        values: dict = {
            "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY", ""),
            "strict_bounds": _env_bool("PLACES_STRICT_BOUNDS", True),
        }
        env_map = {
            "language": "PLACES_LANGUAGE",
            "result_types": "PLACES_RESULT_TYPES",
            "request_timeout_seconds": "PLACES_TIMEOUT",
            "cache_ttl_seconds": "PLACES_CACHE_TTL",
            "max_cache_entries": "PLACES_MAX_CACHE_ENTRIES",
            "min_query_length": "PLACES_MIN_QUERY_LENGTH",
            "debounce_ms": "PLACES_DEBOUNCE_MS",
            "throttle_ms": "PLACES_THROTTLE_MS",
            "search_radius_km": "PLACES_SEARCH_RADIUS_KM",
            "session_timeout_seconds": "PLACES_SESSION_TIMEOUT",
            "sweep_interval_seconds": "PLACES_SWEEP_INTERVAL",
            "autocomplete_price": "PLACES_AUTOCOMPLETE_PRICE",
            "details_price": "PLACES_DETAILS_PRICE",
        }
        for field_name, env_name in env_map.items():
            value = os.getenv(env_name)
            if value is not None and value != "":
                values[field_name] = value
        # pydantic coerces the string values and rejects invalid ones
        return cls(**values)
