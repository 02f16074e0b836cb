"""Search orchestration for places search boxes."""

from .service import SearchOrchestrator, SearchOutcome, SearchState

__all__ = ["SearchOrchestrator", "SearchOutcome", "SearchState"]
