"""Error types for the places search backend.

``AppError`` / ``ErrorCode`` form the JSON error envelope returned by the API.
The exception classes are raised below the search orchestrator, which is the
boundary that turns them into empty results.
"""

from enum import Enum

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Error codes surfaced to API clients."""

    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    API_ERROR = "API_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class AppError(BaseModel):
    """Structured error returned in API responses."""

    code: ErrorCode = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Technical error message")
    user_message: str = Field(..., description="Message safe to show to end users")


class PlacesError(Exception):
    """Base class for places search failures."""


class PlacesAPIError(PlacesError):
    """The places provider could not be reached or returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RequestCancelled(PlacesError):
    """An in-flight request was superseded by a newer one."""


class SessionTokenError(PlacesError):
    """A session token could not be generated (no secure random source)."""
