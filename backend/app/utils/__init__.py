"""Shared helpers."""

from .cancellation import CancelToken
from .geo import bounding_box

__all__ = ["CancelToken", "bounding_box"]
