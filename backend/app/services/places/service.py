"""Google Places web service client (autocomplete + place details).

Architecture:
- Shared httpx client with connection pooling, created lazily
- Request parameters are structured value objects rendered to the provider's
  query-string names, never open dicts
- Transport failures, non-2xx responses and malformed bodies raise
  ``PlacesAPIError``; a superseded request raises ``RequestCancelled``
- Provider statuses (ZERO_RESULTS, OVER_QUERY_LIMIT, ...) are returned to the
  caller, which decides how to degrade
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from app.config import PlacesSettings
from app.models import (
    BoundingBox,
    Coordinates,
    PlacePrediction,
    PlacesAPIError,
    RequestCancelled,
)
from app.utils.cancellation import CancelToken

logger = logging.getLogger(__name__)

DETAILS_FIELDS = "geometry,formatted_address"


@dataclass
class AutocompleteParams:
    """Parameters of one autocomplete request."""
    input: str
    language: str = "en"
    types: Optional[str] = "address"
    location: Optional[Coordinates] = None
    radius_m: Optional[int] = None
    bounds: Optional[BoundingBox] = None
    strict_bounds: bool = False
    country: Optional[str] = None
    session_token: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        """Render provider query parameters (without the API key)."""
        params = {"input": self.input, "language": self.language}
        if self.types:
            params["types"] = self.types
        if self.location is not None:
            params["location"] = f"{self.location.lat},{self.location.lng}"
            if self.radius_m is not None:
                params["radius"] = str(self.radius_m)
        if self.bounds is not None:
            params["bounds"] = self.bounds.to_param()
            if self.strict_bounds:
                params["strictbounds"] = "true"
        if self.session_token:
            params["sessiontoken"] = self.session_token
        if self.country:
            params["components"] = f"country:{self.country.lower()}"
        return params


@dataclass
class DetailsParams:
    """Parameters of one place details request."""
    place_id: str
    fields: str = DETAILS_FIELDS
    session_token: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        params = {"place_id": self.place_id, "fields": self.fields}
        if self.session_token:
            params["sessiontoken"] = self.session_token
        return params


@dataclass
class AutocompleteResult:
    """Parsed autocomplete response."""
    status: str
    predictions: list[PlacePrediction] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "OK"


@dataclass
class PlaceDetailsResult:
    """Parsed place details response."""
    status: str
    location: Optional[Coordinates] = None
    formatted_address: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "OK" and self.location is not None


class PlacesClient(ABC):
    """Abstract base class for place search providers."""

    @abstractmethod
    async def autocomplete(
        self, params: AutocompleteParams, cancel_token: CancelToken | None = None
    ) -> AutocompleteResult:
        pass

    @abstractmethod
    async def place_details(self, params: DetailsParams) -> PlaceDetailsResult:
        pass

    async def close(self) -> None:
        pass


class GooglePlacesClient(PlacesClient):
    """Google Places web service implementation.

    Uses a shared httpx client. A client passed in by the caller is used as-is
    and left open on ``close``.
    """

    def __init__(
        self,
        settings: PlacesSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or PlacesSettings()
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds,
                headers={"Accept": "application/json"},
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """GET a provider endpoint and decode its JSON object body."""
        client = self._get_client()
        query = {**params, "key": self._settings.google_maps_api_key}
        try:
            response = await client.get(url, params=query)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.info(f"[PLACES] {url} returned HTTP {e.response.status_code}")
            raise PlacesAPIError(
                f"HTTP error {e.response.status_code} from {url}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.info(f"[PLACES] Request error for {url}: {type(e).__name__}")
            raise PlacesAPIError(f"Request to {url} failed: {type(e).__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise PlacesAPIError(f"Malformed JSON from {url}") from e
        if not isinstance(data, dict):
            raise PlacesAPIError(f"Unexpected response body from {url}")
        return data

    async def autocomplete(
        self, params: AutocompleteParams, cancel_token: CancelToken | None = None
    ) -> AutocompleteResult:
        """Fetch autocomplete predictions.

        Raises:
            RequestCancelled: If the token was cancelled before or during the call.
            PlacesAPIError: On transport failure, non-2xx status or malformed body.
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled(f"Autocomplete for '{params.input}' cancelled")

        data = await self._get_json(self._settings.autocomplete_url, params.to_dict())

        # The response may arrive after a newer request superseded this one
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled(f"Autocomplete for '{params.input}' cancelled")

        status = str(data.get("status", "UNKNOWN_ERROR"))
        result = AutocompleteResult(status=status, error_message=data.get("error_message"))
        if status != "OK":
            return result

        try:
            result.predictions = [
                PlacePrediction.from_api(p) for p in data.get("predictions") or []
            ]
        except (KeyError, TypeError, ValidationError) as e:
            raise PlacesAPIError(f"Malformed prediction in autocomplete response: {e}") from e
        return result

    async def place_details(self, params: DetailsParams) -> PlaceDetailsResult:
        """Fetch geometry and address for a place.

        Raises:
            PlacesAPIError: On transport failure, non-2xx status or malformed body.
        """
        if not params.place_id:
            raise ValueError("place_id cannot be empty")

        data = await self._get_json(self._settings.details_url, params.to_dict())
        status = str(data.get("status", "UNKNOWN_ERROR"))
        result = PlaceDetailsResult(status=status, error_message=data.get("error_message"))
        if status != "OK":
            return result

        place = data.get("result") or {}
        location = (place.get("geometry") or {}).get("location")
        if location:
            try:
                result.location = Coordinates(lat=location["lat"], lng=location["lng"])
            except (KeyError, TypeError, ValidationError) as e:
                raise PlacesAPIError(f"Malformed geometry in details response: {e}") from e
        result.formatted_address = place.get("formatted_address")
        return result
