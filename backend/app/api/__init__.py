"""HTTP API for places search."""

from .routes import router

__all__ = ["router"]
