"""Utility functions and helpers."""

from .exceptions import (
    raise_bad_gateway,
    raise_bad_request,
    raise_not_found,
)

__all__ = [
    "raise_bad_gateway",
    "raise_bad_request",
    "raise_not_found",
]
