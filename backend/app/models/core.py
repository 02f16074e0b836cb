"""Core data models for the places search backend.

This module contains the Pydantic models shared by the cache, the session
token manager, the search orchestrator and the API layer.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class Coordinates(BaseModel):
    """Geographic coordinates with validation.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class BoundingBox(BaseModel):
    """Rectangular geographic filter (south-west / north-east corners)."""

    south: float
    west: float
    north: float
    east: float

    def to_param(self) -> str:
        """Render as the provider's ``bounds`` parameter: ``south,west|north,east``."""
        return f"{self.south},{self.west}|{self.north},{self.east}"


class PlacePrediction(BaseModel):
    """A single autocomplete candidate returned by the places provider."""

    description: str = Field(..., description="Full display string")
    place_id: str = Field(..., min_length=1, description="Provider place identifier")
    main_text: str = Field(default="", description="Primary part of the description")
    secondary_text: str = Field(default="", description="Secondary part of the description")

    @classmethod
    def from_api(cls, prediction: dict) -> "PlacePrediction":
        """Build from a raw provider prediction with ``structured_formatting``."""
        formatting = prediction.get("structured_formatting") or {}
        return cls(
            description=prediction["description"],
            place_id=prediction["place_id"],
            main_text=formatting.get("main_text", ""),
            secondary_text=formatting.get("secondary_text", ""),
        )


class CachedSuggestion(PlacePrediction):
    """A prediction stamped with the time it entered the query cache."""

    cached_at: float = Field(..., description="Clock time when cached (seconds)")


class CacheStats(BaseModel):
    """Snapshot of the query cache contents."""

    size: int
    queries: list[str] = Field(default_factory=list)


class SelectedLocation(BaseModel):
    """Normalized result of resolving a selected prediction."""

    latitude: float
    longitude: float
    address: str


class AutocompleteCall(BaseModel):
    """An autocomplete request recorded against a session token."""

    query: str
    timestamp: float
    parameters: dict[str, Any] = Field(default_factory=dict)


class DetailsCall(BaseModel):
    """The place details request that terminates a session."""

    place_id: str
    timestamp: float
    parameters: dict[str, Any] = Field(default_factory=dict)


class SessionToken(BaseModel):
    """Lifecycle record of one search session.

    A session is alive while ``now - last_activity_at`` stays under the
    configured timeout. ``completed`` flips exactly when ``details_call``
    is set.
    """

    id: str
    started_at: float
    last_activity_at: float
    autocomplete_calls: list[AutocompleteCall] = Field(default_factory=list)
    details_call: Optional[DetailsCall] = None
    completed: bool = False


class BundledRequest(BaseModel):
    """Billing snapshot of a completed session."""

    session_token: str
    autocomplete_calls: list[AutocompleteCall] = Field(default_factory=list)
    details_call: DetailsCall
    estimated_cost: float = 0.0


class ExpiredSessionRecord(BaseModel):
    """Billing record for a session that timed out without a details call."""

    session_id: str
    duration_seconds: float
    autocomplete_requests: int
    total_cost: float


class SessionStats(BaseModel):
    """Aggregate view of the active session table."""

    active_sessions: int
    total_sessions: int
    average_session_duration_seconds: float
