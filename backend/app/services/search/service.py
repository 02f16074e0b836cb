"""Search orchestrator for one places search box.

Pipeline for a keystroke:
1. ``on_text_change`` debounces: only the last text within ``debounce_ms``
   reaches ``search``. Text shorter than ``min_query_length`` clears results.
2. ``search`` applies the throttle gate, makes sure a session token is held,
   answers from the query cache when it can, and otherwise cancels the
   previous in-flight request and calls the provider.
3. ``select_place`` completes the session and resolves the place location.

This class is the error boundary for everything below it: provider errors,
transport failures and cancellations end as empty results or a None
location, never as an exception.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from app.config import PlacesSettings
from app.models import (
    BundledRequest,
    Coordinates,
    PlacePrediction,
    PlacesAPIError,
    RequestCancelled,
    SelectedLocation,
    SessionTokenError,
)
from app.services.cache import QueryCache
from app.services.places import AutocompleteParams, DetailsParams, PlacesClient
from app.services.session_tokens import SessionTokenManager
from app.utils.cancellation import CancelToken
from app.utils.geo import bounding_box

logger = logging.getLogger(__name__)

# Provider statuses that point at key, quota or request problems rather than
# an honest "nothing found"
OPERATOR_STATUSES = {"OVER_QUERY_LIMIT", "REQUEST_DENIED", "INVALID_REQUEST", "UNKNOWN_ERROR"}


class SearchState(str, Enum):
    """What the search box is doing right now."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"


class SearchOutcome(str, Enum):
    """How the most recent search attempt ended."""

    CACHED = "cached"
    FETCHED = "fetched"
    EMPTY = "empty"
    THROTTLED = "throttled"
    CANCELLED = "cancelled"
    FAILED = "failed"
    DISABLED = "disabled"


class SearchOrchestrator:
    """Debounced, throttled, cached place search with session-token billing.

    One instance backs one search box. The query cache and session manager are
    shared process-wide and injected, as is the clock used for throttling.

    Attributes:
        query: Latest text typed into the box.
        results: Predictions currently shown.
        is_loading: True while a provider request for this box is in flight.
        state: Current ``SearchState``.
        last_outcome: ``SearchOutcome`` of the latest attempt.
        session_token: Id of the session held by this box, if any.
        last_bundle: Billing snapshot of the last completed session.
    """

    def __init__(
        self,
        places_client: PlacesClient,
        cache: QueryCache,
        session_manager: SessionTokenManager,
        *,
        settings: PlacesSettings | None = None,
        reference_location: Coordinates | None = None,
        country_code: str | None = None,
        strict_bounds: bool | None = None,
        clock: Callable[[], float] = time.time,
        on_location_select: Optional[Callable[[SelectedLocation], Any]] = None,
    ) -> None:
        self._client = places_client
        self._cache = cache
        self._sessions = session_manager
        self._settings = settings or PlacesSettings()
        self._reference_location = reference_location
        self._country_code = country_code
        self._strict_bounds = self._settings.strict_bounds if strict_bounds is None else strict_bounds
        self._clock = clock
        self._on_location_select = on_location_select

        self.query = ""
        self.results: list[PlacePrediction] = []
        self.is_loading = False
        self.state = SearchState.IDLE
        self.last_outcome: SearchOutcome | None = None
        self.session_token: str | None = None
        self.last_bundle: BundledRequest | None = None
        self.disabled = False

        self._session_had_results = False
        self._last_dispatch_at: float | None = None
        self._inflight: CancelToken | None = None
        self._latest_request: CancelToken | None = None
        self._debounce_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ── Keystrokes & debounce ─────────────────────────────────────────

    def on_text_change(self, text: str) -> None:
        """Record new text and schedule a debounced search.

        Must be called from a running event loop.
        """
        self.query = text
        self._cancel_debounce()

        if len(text.strip()) < self._settings.min_query_length:
            self._cancel_inflight()
            self.results = []
            self.state = SearchState.IDLE
            return

        self.state = SearchState.DEBOUNCING
        task = asyncio.create_task(self._debounced_search(text))
        self._debounce_task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _debounced_search(self, text: str) -> None:
        await asyncio.sleep(self._settings.debounce_ms / 1000)
        # Timer fired: newer keystrokes schedule a new search instead of cancelling this one
        self._debounce_task = None
        await self.search(text)

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def wait_idle(self) -> None:
        """Wait until every scheduled debounced search has finished."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Search ────────────────────────────────────────────────────────

    async def search(self, query: str) -> list[PlacePrediction]:
        """Search for place predictions matching ``query``.

        Returns:
            The predictions for this query. A throttled call returns what is
            currently shown; cancelled or failed calls return an empty list.
        """
        if self.disabled:
            self.last_outcome = SearchOutcome.DISABLED
            return []

        if len(query.strip()) < self._settings.min_query_length:
            self.results = []
            self._settle_state()
            return []

        now = self._clock()
        if (
            self._last_dispatch_at is not None
            and (now - self._last_dispatch_at) * 1000 < self._settings.throttle_ms
        ):
            logger.debug(f"[SEARCH] Throttled '{query}'")
            self.last_outcome = SearchOutcome.THROTTLED
            self._settle_state()
            return list(self.results)
        self._last_dispatch_at = now

        try:
            self._ensure_session()
        except SessionTokenError as e:
            logger.error(f"[SEARCH] Disabling search box: {e}")
            self.disabled = True
            self.results = []
            self.last_outcome = SearchOutcome.DISABLED
            self._settle_state()
            return []

        cached = self._cache.get(query)
        if cached:
            logger.info(f"[SEARCH] Cache hit for '{query}' ({len(cached)} results)")
            # An older request still in flight must not overwrite these results
            self._latest_request = None
            self._cancel_inflight()
            self._show(cached)
            self.last_outcome = SearchOutcome.CACHED
            self._settle_state()
            return list(cached)

        return await self._fetch(query)

    async def _fetch(self, query: str) -> list[PlacePrediction]:
        """Call the provider for a cache miss, superseding any older request."""
        self._cancel_inflight()
        token = CancelToken()
        self._inflight = token
        self._latest_request = token

        params = self._build_autocomplete_params(query)
        # Registered before sending: a cancelled call was still sent and is billable
        self._sessions.add_autocomplete_request(self.session_token, query, params.to_dict())

        self.is_loading = True
        self.state = SearchState.FETCHING
        fetch = asyncio.ensure_future(self._client.autocomplete(params, cancel_token=token))
        token.bind(fetch)
        try:
            response = await fetch
        except (asyncio.CancelledError, RequestCancelled):
            current = asyncio.current_task()
            if not token.cancelled or (current is not None and current.cancelling()):
                raise
            logger.debug(f"[SEARCH] Request for '{query}' superseded")
            return self._cancelled(token)
        except PlacesAPIError as e:
            logger.info(f"[SEARCH] Autocomplete failed for '{query}': {e}")
            return self._fail()
        except Exception as e:
            logger.warning(f"[SEARCH] Unexpected autocomplete error for '{query}': {type(e).__name__}: {e}")
            return self._fail()
        finally:
            if self._inflight is token:
                self._inflight = None
                self.is_loading = False
                self._settle_state()

        if token.cancelled:
            return self._cancelled(token)

        if not response.ok:
            if response.status in OPERATOR_STATUSES:
                logger.warning(
                    f"[SEARCH] Places autocomplete returned {response.status}: "
                    f"{response.error_message or 'no message'}"
                )
            self._show([])
            self.last_outcome = SearchOutcome.EMPTY
            return []

        if not response.predictions:
            self._show([])
            self.last_outcome = SearchOutcome.EMPTY
            return []

        self._cache.set(query, response.predictions)
        self._show(response.predictions)
        self.last_outcome = SearchOutcome.FETCHED
        logger.info(f"[SEARCH] '{query}': {len(response.predictions)} results")
        return list(response.predictions)

    def _fail(self) -> list[PlacePrediction]:
        self._show([])
        self.last_outcome = SearchOutcome.FAILED
        return []

    def _cancelled(self, token: CancelToken) -> list[PlacePrediction]:
        # A newer request owns the outcome
        if token is self._latest_request:
            self.last_outcome = SearchOutcome.CANCELLED
        return []

    def _build_autocomplete_params(self, query: str) -> AutocompleteParams:
        settings = self._settings
        params = AutocompleteParams(
            input=query,
            language=settings.language,
            types=settings.result_types or None,
            country=self._country_code,
            session_token=self.session_token,
        )
        ref = self._reference_location
        if ref is not None:
            params.location = ref
            params.radius_m = int(settings.search_radius_km * 1000)
            params.bounds = bounding_box(ref.lat, ref.lng, settings.search_radius_km)
            params.strict_bounds = self._strict_bounds
        return params

    def _ensure_session(self) -> None:
        """Hold a live session token, replacing one that expired or was swept."""
        if self.session_token is not None and self._sessions.is_session_valid(self.session_token):
            return
        self.session_token = self._sessions.create_session_token()
        self._session_had_results = False

    # ── Selection ─────────────────────────────────────────────────────

    async def select_place(self, place: PlacePrediction) -> SelectedLocation | None:
        """Complete the session and resolve the location of a prediction.

        Returns:
            The normalized location, or None if it could not be resolved.
        """
        params = DetailsParams(place_id=place.place_id, session_token=self.session_token)

        if self.session_token is not None:
            self.last_bundle = self._sessions.complete_session(
                self.session_token, place.place_id, params.to_dict()
            )
            # The next interaction starts a fresh session
            self.session_token = None
            self._session_had_results = False

        try:
            details = await self._client.place_details(params)
        except PlacesAPIError as e:
            logger.info(f"[SEARCH] Place details failed for {place.place_id}: {e}")
            return None
        except Exception as e:
            logger.warning(f"[SEARCH] Unexpected details error for {place.place_id}: {type(e).__name__}: {e}")
            return None

        if not details.ok:
            if details.status in OPERATOR_STATUSES:
                logger.warning(f"[SEARCH] Place details returned {details.status}: {details.error_message}")
            else:
                logger.info(f"[SEARCH] No location for {place.place_id} (status {details.status})")
            return None

        location = SelectedLocation(
            latitude=details.location.lat,
            longitude=details.location.lng,
            address=place.description,
        )
        if self._on_location_select is not None:
            self._on_location_select(location)
        return location

    # ── Reset ─────────────────────────────────────────────────────────

    def clear_results(self) -> None:
        """Empty results and query text.

        A held session that never produced results is treated as abandoned:
        the local reference is dropped and the manager's sweep expires it.
        """
        self._cancel_debounce()
        self._cancel_inflight()
        self.results = []
        self.query = ""
        if self.session_token is not None and not self._session_had_results:
            self.session_token = None
        self._settle_state()

    def clear_results_only(self) -> None:
        self._cancel_inflight()
        self.results = []
        self._settle_state()

    def dispose(self) -> None:
        """Cancel pending debounced searches and the in-flight request."""
        self._cancel_debounce()
        for task in list(self._tasks):
            task.cancel()
        self._cancel_inflight()
        self.is_loading = False
        self.state = SearchState.IDLE

    # ── Internals ─────────────────────────────────────────────────────

    def _show(self, results: Sequence[PlacePrediction]) -> None:
        self.results = list(results)
        if self.results and self.session_token is not None:
            self._session_had_results = True

    def _cancel_inflight(self) -> None:
        if self._inflight is not None:
            self._inflight.cancel()
            self._inflight = None
            self.is_loading = False

    def _settle_state(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self.state = SearchState.DEBOUNCING
        elif self._inflight is not None:
            self.state = SearchState.FETCHING
        else:
            self.state = SearchState.IDLE
