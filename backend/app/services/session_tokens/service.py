"""Session token manager for places autocomplete billing.

A session groups a run of autocomplete requests with the place details request
that ends it. The provider bills a completed session as a single details call,
while a session that times out is billed per autocomplete request.

Lifecycle:
1. ``create_session_token`` inserts a fresh session into the active table.
2. ``add_autocomplete_request`` appends calls and bumps the activity time.
3. The session leaves the table exactly once: either ``complete_session``
   takes it (returns a ``BundledRequest``) or the periodic sweep takes it
   after ``session_timeout_seconds`` of inactivity (emits an
   ``ExpiredSessionRecord``). Both use ``dict.pop``, so whichever runs first
   wins and the other becomes a no-op.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from uuid import uuid4

from app.models import (
    AutocompleteCall,
    BundledRequest,
    DetailsCall,
    ExpiredSessionRecord,
    SessionStats,
    SessionToken,
    SessionTokenError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacesPricing:
    """Per-request prices used to estimate session cost (USD)."""
    autocomplete: float = 0.00283
    details: float = 0.017


def generate_session_id() -> str:
    """Generate a random version-4 UUID string.

    ``uuid4`` draws 128 bits from ``os.urandom``. There is no fallback to a
    weaker source: predictable tokens would break the bundling contract.

    Raises:
        SessionTokenError: If the OS random source is unavailable.
    """
    try:
        return str(uuid4())
    except NotImplementedError as e:
        raise SessionTokenError("No secure random source available for session tokens") from e


class SessionTokenManager:
    """Tracks active search sessions and their billing state.

    Configuration and time source are injected, so tests can create isolated
    managers and drive expiry with a fake clock. The background sweep is an
    explicit task started and stopped by the host application.
    """

    def __init__(
        self,
        session_timeout_seconds: float = 300,
        sweep_interval_seconds: float = 60,
        pricing: PlacesPricing | None = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = generate_session_id,
        on_session_expired: Optional[Callable[[ExpiredSessionRecord], Any]] = None,
    ) -> None:
        self._sessions: dict[str, SessionToken] = {}
        self._timeout = session_timeout_seconds
        self._sweep_interval = sweep_interval_seconds
        self._pricing = pricing or PlacesPricing()
        self._clock = clock
        self._id_factory = id_factory
        self._on_session_expired = on_session_expired
        self._sweeping = False
        self._sweep_task: asyncio.Task | None = None

    # ── Session lifecycle ─────────────────────────────────────────────

    def create_session_token(self) -> str:
        """Create a new session and return its id.

        Raises:
            SessionTokenError: If a secure id cannot be generated.
        """
        session_id = self._id_factory()
        now = self._clock()
        self._sessions[session_id] = SessionToken(
            id=session_id,
            started_at=now,
            last_activity_at=now,
        )
        logger.info(f"[SESSION] Created session token {session_id}")
        return session_id

    def add_autocomplete_request(
        self, session_id: str, query: str, parameters: dict[str, Any]
    ) -> bool:
        """Record an autocomplete request against a live session.

        Returns:
            True if recorded, False if the session is unknown.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"[SESSION] Session {session_id} not found for autocomplete request")
            return False

        now = self._clock()
        session.last_activity_at = now
        session.autocomplete_calls.append(
            AutocompleteCall(query=query, timestamp=now, parameters=dict(parameters))
        )
        logger.info(f"[SESSION] Added autocomplete request to {session_id}: '{query}'")
        return True

    def complete_session(
        self, session_id: str, place_id: str, parameters: dict[str, Any]
    ) -> BundledRequest | None:
        """Terminate a session with a place details request.

        The session is removed from the active table, so a second call for the
        same id returns None and cannot bill twice.

        Returns:
            A billing snapshot, or None if the session is unknown.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            logger.warning(f"[SESSION] Session {session_id} not found for completion")
            return None

        now = self._clock()
        session.last_activity_at = now
        session.details_call = DetailsCall(place_id=place_id, timestamp=now, parameters=dict(parameters))
        session.completed = True

        bundled = BundledRequest(
            session_token=session_id,
            autocomplete_calls=list(session.autocomplete_calls),
            details_call=session.details_call,
            estimated_cost=self.calculate_session_cost(session, completed=True),
        )
        logger.info(
            f"[SESSION] Completed {session_id} with details for {place_id} "
            f"({len(bundled.autocomplete_calls)} autocomplete requests, ${bundled.estimated_cost:.5f})"
        )
        return bundled

    def get_session(self, session_id: str) -> SessionToken | None:
        return self._sessions.get(session_id)

    def is_session_valid(self, session_id: str) -> bool:
        """Check that a session exists and has not timed out."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return self._clock() - session.last_activity_at < self._timeout

    def get_active_sessions(self) -> list[SessionToken]:
        return list(self._sessions.values())

    def get_session_stats(self) -> SessionStats:
        """Summarize the active table (count and mean age)."""
        now = self._clock()
        durations = [now - s.started_at for s in self._sessions.values()]
        average = sum(durations) / len(durations) if durations else 0.0
        return SessionStats(
            active_sessions=len(self._sessions),
            total_sessions=len(durations),
            average_session_duration_seconds=average,
        )

    # ── Billing ───────────────────────────────────────────────────────

    def calculate_session_cost(self, session: SessionToken, completed: bool) -> float:
        """Estimate what the provider charges for a session.

        A completed session costs one details call; its autocomplete calls are
        bundled. An uncompleted session pays for every autocomplete call.
        """
        if completed:
            return self._pricing.details
        return len(session.autocomplete_calls) * self._pricing.autocomplete

    # ── Expiry sweep ──────────────────────────────────────────────────

    def sweep_expired_sessions(self) -> list[ExpiredSessionRecord]:
        """Remove timed-out sessions and return their billing records."""
        if self._sweeping:
            return []
        self._sweeping = True
        try:
            now = self._clock()
            expired_ids = [
                sid for sid, s in self._sessions.items()
                if now - s.last_activity_at >= self._timeout
            ]

            records: list[ExpiredSessionRecord] = []
            for session_id in expired_ids:
                # Completion may already have taken it
                session = self._sessions.pop(session_id, None)
                if session is None:
                    continue
                record = ExpiredSessionRecord(
                    session_id=session_id,
                    duration_seconds=round(now - session.started_at, 3),
                    autocomplete_requests=len(session.autocomplete_calls),
                    total_cost=self.calculate_session_cost(session, completed=False),
                )
                logger.info(
                    f"[SESSION] Expired {session_id} after {record.duration_seconds:.0f}s: "
                    f"{record.autocomplete_requests} autocomplete requests, ${record.total_cost:.5f}"
                )
                if self._on_session_expired is not None:
                    self._on_session_expired(record)
                records.append(record)

            if records:
                logger.info(f"[SESSION] Cleaned up {len(records)} expired sessions")
            return records
        finally:
            self._sweeping = False

    async def _sweep_loop(self) -> None:
        """Background task running the sweep on a fixed interval."""
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep_expired_sessions()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"[SESSION] Error in sweep loop: {e}")

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"[SESSION] Sweeper started (every {self._sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep and wait for it to finish."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
            logger.info("[SESSION] Sweeper stopped")

    async def dispose(self) -> None:
        await self.stop()
        self._sessions.clear()

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    @property
    def session_timeout_seconds(self) -> float:
        return self._timeout

    @property
    def pricing(self) -> PlacesPricing:
        return self._pricing
