# core/exceptions.py
"""Exception types shared across the Cadence layers.

Each class names one failure category so callers can decide between
falling back, rejecting the request, or scheduling a retry.
"""

from __future__ import annotations


class CadenceError(Exception):
    """Base class for all Cadence errors."""


class ProviderError(CadenceError):
    """The text generation provider returned an error status, empty content,
    or a payload that could not be parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(CadenceError):
    """The caller supplied invalid input, such as an unknown task id or an
    out-of-range progress value."""


class ConsistencyConflict(CadenceError):
    """The requested update would break an invariant of the stored state."""


class TransientIOError(CadenceError):
    """A storage or network hiccup. Safe to retry at the task level."""
