"""API routes for places search.

A client creates a search box, streams keystrokes into it and polls or
requests results, then selects a prediction to resolve its location:

- POST   /search-boxes                   create a search box
- POST   /search-boxes/{box_id}/text     keystroke (debounced search)
- POST   /search-boxes/{box_id}/search   immediate search
- GET    /search-boxes/{box_id}/results  current results and loading state
- POST   /search-boxes/{box_id}/select   resolve a prediction, completes the session
- DELETE /search-boxes/{box_id}/results  clear results and query
- DELETE /search-boxes/{box_id}          dispose the search box

The query cache and session manager are process-wide; every search box
shares them.
"""

import asyncio
import logging
import time
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.config import PlacesSettings
from app.models import (
    AppError,
    CacheStats,
    Coordinates,
    ErrorCode,
    PlacePrediction,
    SelectedLocation,
    SessionStats,
)
from app.services import (
    GooglePlacesClient,
    InMemoryQueryCache,
    PlacesClient,
    PlacesPricing,
    SearchOrchestrator,
    SessionTokenManager,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response models
class CreateSearchBoxRequest(BaseModel):
    """Request model for creating a search box."""
    reference_location: Optional[Coordinates] = None
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)
    strict_bounds: Optional[bool] = None


class CreateSearchBoxResponse(BaseModel):
    """Response model for search box creation."""
    success: bool
    box_id: Optional[str] = None
    error: Optional[AppError] = None


class TextChangeRequest(BaseModel):
    """A keystroke: the full current text of the search box."""
    text: str = ""


class SearchRequest(BaseModel):
    """Request model for an immediate search."""
    query: str = Field(..., min_length=1)


class SearchResultsResponse(BaseModel):
    """Current state of a search box."""
    success: bool
    query: str = ""
    results: list[PlacePrediction] = Field(default_factory=list)
    is_loading: bool = False
    state: Optional[str] = None
    last_outcome: Optional[str] = None
    error: Optional[AppError] = None


class SelectPlaceResponse(BaseModel):
    """Response model for place selection."""
    success: bool
    location: Optional[SelectedLocation] = None
    error: Optional[AppError] = None


class StatusResponse(BaseModel):
    success: bool
    error: Optional[AppError] = None


# Service instances
_settings: PlacesSettings | None = None
_query_cache: InMemoryQueryCache | None = None
_session_manager: SessionTokenManager | None = None
_places_client: PlacesClient | None = None
_search_boxes: dict[str, SearchOrchestrator] = {}
_box_last_used: dict[str, float] = {}
_box_sweep_task: asyncio.Task | None = None
_clock = time.time


def get_settings() -> PlacesSettings:
    global _settings
    if _settings is None:
        _settings = PlacesSettings.from_env()
    return _settings


def get_query_cache() -> InMemoryQueryCache:
    global _query_cache
    if _query_cache is None:
        settings = get_settings()
        _query_cache = InMemoryQueryCache(
            ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.max_cache_entries,
        )
    return _query_cache


def get_session_manager() -> SessionTokenManager:
    global _session_manager
    if _session_manager is None:
        settings = get_settings()
        _session_manager = SessionTokenManager(
            session_timeout_seconds=settings.session_timeout_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            pricing=PlacesPricing(
                autocomplete=settings.autocomplete_price,
                details=settings.details_price,
            ),
        )
    return _session_manager


def get_places_client() -> PlacesClient:
    global _places_client
    if _places_client is None:
        _places_client = GooglePlacesClient(get_settings())
    return _places_client


def _get_box(box_id: str) -> SearchOrchestrator | None:
    box = _search_boxes.get(box_id)
    if box is not None:
        _box_last_used[box_id] = _clock()
    return box


def _drop_box(box_id: str) -> SearchOrchestrator | None:
    _box_last_used.pop(box_id, None)
    box = _search_boxes.pop(box_id, None)
    if box is not None:
        box.dispose()
    return box


def sweep_idle_search_boxes() -> int:
    """Dispose search boxes unused for longer than the session timeout.

    Clients are expected to delete their boxes, but a client that goes away
    never does.

    Returns:
        Number of boxes removed.
    """
    limit = get_settings().session_timeout_seconds
    now = _clock()
    idle = [box_id for box_id, used in list(_box_last_used.items()) if now - used >= limit]
    for box_id in idle:
        _drop_box(box_id)
    if idle:
        logger.info(f"[API] Removed {len(idle)} idle search boxes")
    return len(idle)


async def _box_sweep_loop() -> None:
    while True:
        try:
            await asyncio.sleep(get_settings().sweep_interval_seconds)
            sweep_idle_search_boxes()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"[API] Error in search box sweep: {e}")


def start_search_box_sweeper() -> None:
    """Start the periodic idle search box sweep on the running event loop."""
    global _box_sweep_task
    if _box_sweep_task is None or _box_sweep_task.done():
        _box_sweep_task = asyncio.create_task(_box_sweep_loop())


async def shutdown_services() -> None:
    """Dispose search boxes and release shared services."""
    global _settings, _query_cache, _session_manager, _places_client, _box_sweep_task
    if _box_sweep_task is not None:
        _box_sweep_task.cancel()
        await asyncio.gather(_box_sweep_task, return_exceptions=True)
        _box_sweep_task = None
    for box_id in list(_search_boxes):
        _drop_box(box_id)
    if _session_manager is not None:
        await _session_manager.dispose()
    if _places_client is not None:
        await _places_client.close()
    _settings = None
    _query_cache = None
    _session_manager = None
    _places_client = None


def _not_found(box_id: str) -> AppError:
    return AppError(
        code=ErrorCode.NOT_FOUND,
        message=f"Search box {box_id} not found",
        user_message="This search has expired. Please start a new search.",
    )


def _results_response(box: SearchOrchestrator) -> SearchResultsResponse:
    return SearchResultsResponse(
        success=True,
        query=box.query,
        results=box.results,
        is_loading=box.is_loading,
        state=box.state.value,
        last_outcome=box.last_outcome.value if box.last_outcome else None,
    )


@router.post("/search-boxes", response_model=CreateSearchBoxResponse)
async def create_search_box(request: CreateSearchBoxRequest) -> CreateSearchBoxResponse:
    """Create a search box bound to the shared cache and session manager."""
    sweep_idle_search_boxes()
    box_id = str(uuid4())
    _search_boxes[box_id] = SearchOrchestrator(
        get_places_client(),
        get_query_cache(),
        get_session_manager(),
        settings=get_settings(),
        reference_location=request.reference_location,
        country_code=request.country_code,
        strict_bounds=request.strict_bounds,
    )
    _box_last_used[box_id] = _clock()
    logger.info(f"[API] Created search box {box_id}")
    return CreateSearchBoxResponse(success=True, box_id=box_id)


@router.post("/search-boxes/{box_id}/text", response_model=SearchResultsResponse)
async def change_text(box_id: str, request: TextChangeRequest) -> SearchResultsResponse:
    """Feed the current text; the search runs after the debounce window."""
    box = _get_box(box_id)
    if box is None:
        return SearchResultsResponse(success=False, error=_not_found(box_id))
    box.on_text_change(request.text)
    return _results_response(box)


@router.post("/search-boxes/{box_id}/search", response_model=SearchResultsResponse)
async def search_places(box_id: str, request: SearchRequest) -> SearchResultsResponse:
    """Run a search immediately (still throttled and cached)."""
    box = _get_box(box_id)
    if box is None:
        return SearchResultsResponse(success=False, error=_not_found(box_id))
    box.query = request.query
    await box.search(request.query)
    return _results_response(box)


@router.get("/search-boxes/{box_id}/results", response_model=SearchResultsResponse)
async def get_results(box_id: str) -> SearchResultsResponse:
    box = _get_box(box_id)
    if box is None:
        return SearchResultsResponse(success=False, error=_not_found(box_id))
    return _results_response(box)


@router.post("/search-boxes/{box_id}/select", response_model=SelectPlaceResponse)
async def select_place(box_id: str, place: PlacePrediction) -> SelectPlaceResponse:
    """Resolve a prediction to coordinates and complete the billing session."""
    box = _get_box(box_id)
    if box is None:
        return SelectPlaceResponse(success=False, error=_not_found(box_id))

    location = await box.select_place(place)
    if location is None:
        return SelectPlaceResponse(
            success=False,
            error=AppError(
                code=ErrorCode.API_ERROR,
                message=f"Could not resolve place {place.place_id}",
                user_message="Could not find that location. Please try another result.",
            ),
        )
    return SelectPlaceResponse(success=True, location=location)


@router.delete("/search-boxes/{box_id}/results", response_model=SearchResultsResponse)
async def clear_results(box_id: str) -> SearchResultsResponse:
    box = _get_box(box_id)
    if box is None:
        return SearchResultsResponse(success=False, error=_not_found(box_id))
    box.clear_results()
    return _results_response(box)


@router.delete("/search-boxes/{box_id}", response_model=StatusResponse)
async def delete_search_box(box_id: str) -> StatusResponse:
    if _drop_box(box_id) is None:
        return StatusResponse(success=False, error=_not_found(box_id))
    return StatusResponse(success=True)


@router.get("/sessions/stats", response_model=SessionStats)
async def get_session_stats() -> SessionStats:
    return get_session_manager().get_session_stats()


@router.get("/cache/stats", response_model=CacheStats)
async def get_cache_stats() -> CacheStats:
    return get_query_cache().get_stats()


@router.delete("/cache", response_model=StatusResponse)
async def clear_cache() -> StatusResponse:
    get_query_cache().clear()
    return StatusResponse(success=True)
