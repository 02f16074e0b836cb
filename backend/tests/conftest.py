"""Shared test doubles for the places search tests."""

import asyncio

import pytest

from app.models import PlacePrediction, RequestCancelled
from app.services.places import (
    AutocompleteParams,
    AutocompleteResult,
    DetailsParams,
    PlaceDetailsResult,
    PlacesClient,
)


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlacesClient(PlacesClient):
    """In-memory places provider.

    Responses are keyed by the autocomplete input. A query listed in ``gates``
    blocks until its event is set, which lets tests hold a request in flight.
    """

    def __init__(self) -> None:
        self.autocomplete_calls: list[AutocompleteParams] = []
        self.details_calls: list[DetailsParams] = []
        self.autocomplete_results: dict[str, AutocompleteResult] = {}
        self.details_result = PlaceDetailsResult(status="NOT_FOUND")
        self.autocomplete_error: Exception | None = None
        self.details_error: Exception | None = None
        self.gates: dict[str, asyncio.Event] = {}

    async def autocomplete(self, params, cancel_token=None) -> AutocompleteResult:
        self.autocomplete_calls.append(params)
        gate = self.gates.get(params.input)
        if gate is not None:
            await gate.wait()
        if cancel_token is not None and cancel_token.cancelled:
            raise RequestCancelled(params.input)
        if self.autocomplete_error is not None:
            raise self.autocomplete_error
        return self.autocomplete_results.get(params.input, AutocompleteResult(status="ZERO_RESULTS"))

    async def place_details(self, params) -> PlaceDetailsResult:
        self.details_calls.append(params)
        if self.details_error is not None:
            raise self.details_error
        return self.details_result


def make_prediction(place_id: str, description: str) -> PlacePrediction:
    main, _, secondary = description.partition(", ")
    return PlacePrediction(
        description=description,
        place_id=place_id,
        main_text=main,
        secondary_text=secondary,
    )


def ok_result(*predictions: PlacePrediction) -> AutocompleteResult:
    return AutocompleteResult(status="OK", predictions=list(predictions))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_places() -> FakePlacesClient:
    return FakePlacesClient()
