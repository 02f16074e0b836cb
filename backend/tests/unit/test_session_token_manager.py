"""Unit tests for the session token manager.

Covers the session lifecycle, completion idempotence, expiry sweep and cost
estimates.
"""

import asyncio
import re

import pytest

from app.models import SessionTokenError
from app.services.session_tokens import PlacesPricing, SessionTokenManager, generate_session_id
from app.services.session_tokens import service as session_service
from conftest import FakeClock

UUID4_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


class TestGenerateSessionId:
    """Tests for session id generation."""

    def test_uuid4_shape(self) -> None:
        assert UUID4_RE.match(generate_session_id())

    def test_ids_are_unique(self) -> None:
        ids = {generate_session_id() for _ in range(500)}
        assert len(ids) == 500

    def test_missing_random_source_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def no_entropy():
            raise NotImplementedError("os.urandom unavailable")

        monkeypatch.setattr(session_service, "uuid4", no_entropy)
        with pytest.raises(SessionTokenError):
            generate_session_id()


class TestSessionLifecycle:
    """Tests for create/add/complete."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.manager = SessionTokenManager(clock=self.clock)

    def test_create_session(self) -> None:
        session_id = self.manager.create_session_token()
        session = self.manager.get_session(session_id)
        assert UUID4_RE.match(session_id)
        assert session is not None
        assert session.started_at == self.clock.now
        assert session.last_activity_at == self.clock.now
        assert session.autocomplete_calls == []
        assert session.details_call is None
        assert session.completed is False

    def test_create_uses_id_factory(self) -> None:
        manager = SessionTokenManager(clock=self.clock, id_factory=lambda: "fixed-id")
        assert manager.create_session_token() == "fixed-id"
        assert manager.get_session("fixed-id") is not None

    def test_add_autocomplete_request(self) -> None:
        session_id = self.manager.create_session_token()
        self.clock.advance(5)
        assert self.manager.add_autocomplete_request(session_id, "Amst", {"input": "Amst"}) is True

        session = self.manager.get_session(session_id)
        assert session.last_activity_at == self.clock.now
        assert len(session.autocomplete_calls) == 1
        call = session.autocomplete_calls[0]
        assert call.query == "Amst"
        assert call.timestamp == self.clock.now
        assert call.parameters == {"input": "Amst"}

    def test_add_keeps_call_order(self) -> None:
        session_id = self.manager.create_session_token()
        for query in ("Ams", "Amst", "Amste"):
            self.manager.add_autocomplete_request(session_id, query, {})
        queries = [c.query for c in self.manager.get_session(session_id).autocomplete_calls]
        assert queries == ["Ams", "Amst", "Amste"]

    def test_add_to_unknown_session(self) -> None:
        assert self.manager.add_autocomplete_request("missing", "Amst", {}) is False

    def test_complete_session(self) -> None:
        session_id = self.manager.create_session_token()
        self.manager.add_autocomplete_request(session_id, "Amst", {"input": "Amst"})
        self.manager.add_autocomplete_request(session_id, "Amster", {"input": "Amster"})

        bundled = self.manager.complete_session(session_id, "p1", {"place_id": "p1"})

        assert bundled is not None
        assert bundled.session_token == session_id
        assert [c.query for c in bundled.autocomplete_calls] == ["Amst", "Amster"]
        assert bundled.details_call.place_id == "p1"
        assert bundled.details_call.parameters == {"place_id": "p1"}
        assert bundled.estimated_cost == pytest.approx(0.017)
        assert self.manager.get_session(session_id) is None

    def test_complete_twice_returns_none(self) -> None:
        session_id = self.manager.create_session_token()
        assert self.manager.complete_session(session_id, "p1", {}) is not None
        assert self.manager.complete_session(session_id, "p1", {}) is None

    def test_complete_unknown_session(self) -> None:
        assert self.manager.complete_session("missing", "p1", {}) is None

    def test_bundle_is_a_snapshot(self) -> None:
        session_id = self.manager.create_session_token()
        self.manager.add_autocomplete_request(session_id, "Amst", {})
        bundled = self.manager.complete_session(session_id, "p1", {})
        # Session is gone, further adds are rejected and cannot alter the bundle
        assert self.manager.add_autocomplete_request(session_id, "Amsterdam", {}) is False
        assert len(bundled.autocomplete_calls) == 1


class TestSessionValidity:
    """Tests for is_session_valid and timeouts."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.manager = SessionTokenManager(session_timeout_seconds=300, clock=self.clock)

    def test_unknown_session_invalid(self) -> None:
        assert self.manager.is_session_valid("missing") is False

    def test_valid_within_timeout(self) -> None:
        session_id = self.manager.create_session_token()
        self.clock.advance(299)
        assert self.manager.is_session_valid(session_id) is True

    def test_invalid_at_timeout(self) -> None:
        session_id = self.manager.create_session_token()
        self.clock.advance(300)
        assert self.manager.is_session_valid(session_id) is False

    def test_activity_extends_lifetime(self) -> None:
        session_id = self.manager.create_session_token()
        self.clock.advance(200)
        self.manager.add_autocomplete_request(session_id, "Amst", {})
        self.clock.advance(200)
        assert self.manager.is_session_valid(session_id) is True


class TestSessionCost:
    """Tests for cost estimates."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.manager = SessionTokenManager(clock=self.clock)

    def _session_with_calls(self, count: int):
        session_id = self.manager.create_session_token()
        for i in range(count):
            self.manager.add_autocomplete_request(session_id, f"query {i}", {})
        return self.manager.get_session(session_id)

    def test_completed_session_costs_one_details_call(self) -> None:
        session = self._session_with_calls(3)
        assert self.manager.calculate_session_cost(session, completed=True) == pytest.approx(0.017)

    def test_uncompleted_session_costs_each_autocomplete(self) -> None:
        session = self._session_with_calls(3)
        assert self.manager.calculate_session_cost(session, completed=False) == pytest.approx(3 * 0.00283)

    def test_custom_pricing(self) -> None:
        manager = SessionTokenManager(clock=self.clock, pricing=PlacesPricing(autocomplete=0.01, details=0.5))
        session_id = manager.create_session_token()
        manager.add_autocomplete_request(session_id, "Amst", {})
        manager.add_autocomplete_request(session_id, "Amste", {})
        session = manager.get_session(session_id)
        assert manager.calculate_session_cost(session, completed=False) == pytest.approx(0.02)
        assert manager.calculate_session_cost(session, completed=True) == pytest.approx(0.5)


class TestSessionSweep:
    """Tests for the expiry sweep."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.expired = []
        self.manager = SessionTokenManager(
            session_timeout_seconds=300,
            clock=self.clock,
            on_session_expired=self.expired.append,
        )

    def test_sweep_bills_each_autocomplete_call(self) -> None:
        session_id = self.manager.create_session_token()
        for query in ("Ams", "Amst", "Amste"):
            self.manager.add_autocomplete_request(session_id, query, {})
        self.clock.advance(301)

        records = self.manager.sweep_expired_sessions()

        assert len(records) == 1
        assert records[0].session_id == session_id
        assert records[0].autocomplete_requests == 3
        assert records[0].total_cost == pytest.approx(3 * 0.00283)
        assert records[0].duration_seconds == pytest.approx(301)
        assert self.expired == records
        assert self.manager.get_session(session_id) is None

    def test_sweep_keeps_live_sessions(self) -> None:
        old_id = self.manager.create_session_token()
        self.clock.advance(200)
        new_id = self.manager.create_session_token()
        self.clock.advance(100)

        records = self.manager.sweep_expired_sessions()

        assert [r.session_id for r in records] == [old_id]
        assert self.manager.get_session(new_id) is not None

    def test_sweep_with_nothing_expired(self) -> None:
        self.manager.create_session_token()
        assert self.manager.sweep_expired_sessions() == []
        assert self.expired == []

    def test_completion_after_sweep_returns_none(self) -> None:
        session_id = self.manager.create_session_token()
        self.clock.advance(300)
        self.manager.sweep_expired_sessions()
        assert self.manager.complete_session(session_id, "p1", {}) is None

    def test_sweep_after_completion_skips_session(self) -> None:
        session_id = self.manager.create_session_token()
        self.manager.add_autocomplete_request(session_id, "Amst", {})
        self.manager.complete_session(session_id, "p1", {})
        self.clock.advance(600)
        assert self.manager.sweep_expired_sessions() == []
        assert self.expired == []

    def test_session_taken_during_sweep_is_not_billed(self) -> None:
        bundles = []

        def complete_other(record) -> None:
            # A completion landing mid-sweep wins the race for the other session
            bundles.append(manager.complete_session(second, "p2", {}))

        manager = SessionTokenManager(
            session_timeout_seconds=300, clock=self.clock, on_session_expired=complete_other
        )
        first = manager.create_session_token()
        second = manager.create_session_token()
        self.clock.advance(300)

        records = manager.sweep_expired_sessions()

        assert [r.session_id for r in records] == [first]
        assert bundles[0].session_token == second
        assert manager.get_active_sessions() == []

    def test_session_stats(self) -> None:
        self.manager.create_session_token()
        self.clock.advance(10)
        self.manager.create_session_token()
        stats = self.manager.get_session_stats()
        assert stats.active_sessions == 2
        assert stats.total_sessions == 2
        assert stats.average_session_duration_seconds == pytest.approx(5)

    def test_session_stats_empty(self) -> None:
        stats = self.manager.get_session_stats()
        assert stats.active_sessions == 0
        assert stats.average_session_duration_seconds == 0.0


class TestSweeperTask:
    """Tests for the background sweeper lifecycle."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        clock = FakeClock()
        manager = SessionTokenManager(
            session_timeout_seconds=300, sweep_interval_seconds=0.01, clock=clock
        )
        session_id = manager.create_session_token()
        clock.advance(301)

        manager.start()
        assert manager.is_running is True
        for _ in range(50):
            if manager.get_session(session_id) is None:
                break
            await asyncio.sleep(0.01)
        await manager.stop()

        assert manager.get_session(session_id) is None
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_dispose_clears_sessions(self) -> None:
        manager = SessionTokenManager(sweep_interval_seconds=60, clock=FakeClock())
        manager.create_session_token()
        manager.start()
        await manager.dispose()
        assert manager.get_active_sessions() == []
        assert manager.is_running is False
