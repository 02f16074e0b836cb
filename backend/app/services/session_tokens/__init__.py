"""Session token lifecycle and billing estimates for places autocomplete."""

from .service import PlacesPricing, SessionTokenManager, generate_session_id

__all__ = ["PlacesPricing", "SessionTokenManager", "generate_session_id"]
