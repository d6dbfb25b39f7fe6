# core/exceptions.py
"""Exception hierarchy for the continuity engine."""

from __future__ import annotations


class ContinuityError(Exception):
    """Base class for all continuity engine errors."""


class FatalSequenceError(ContinuityError):
    """A condition that halts the whole run because skipping would break continuity."""

    def __init__(self, message: str, item_id: str, item_title: str = "") -> None:
        super().__init__(message)
        self.item_id = item_id
        self.item_title = item_title

    def __str__(self) -> str:
        label = f"'{self.item_title}' ({self.item_id})" if self.item_title else self.item_id
        return f"{self.args[0]} [item {label}]"


class MissingOutlineError(FatalSequenceError):
    """An item that needs generation has no usable outline."""


class BrokenContinuityError(FatalSequenceError):
    """The item preceding the resume point has no body text."""


class UnknownStartItemError(FatalSequenceError):
    """The requested resume item does not exist in the work."""


class GenerationError(ContinuityError):
    """Typed failure reported by the generation service."""

    TIMEOUT = "timeout"
    HTTP = "http"
    TRANSPORT = "transport"
    EMPTY = "empty"
    INVALID_RESPONSE = "invalid_response"

    def __init__(self, reason: str, kind: str = TRANSPORT, purpose: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind
        self.purpose = purpose


class StoreError(ContinuityError):
    """The item store rejected a persist request."""


class RecordValidationError(ContinuityError):
    """A malformed record was rejected at the store adapter boundary."""
