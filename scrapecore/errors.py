"""Typed errors raised by the scrape engine.

Every failure that reaches a caller is a :class:`ScrapeError` carrying a
machine-readable :class:`ErrorKind`, a human-readable message and a
``retryable`` flag so callers can decide whether re-issuing the same request
makes sense.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    INVALID_REQUEST = "InvalidRequest"
    FETCH_FAILURE = "FetchFailure"
    ACTION_TIMEOUT = "ActionTimeout"
    ELEMENT_NOT_FOUND = "ElementNotFound"
    EXTRACTION_FAILURE = "ExtractionFailure"
    UPSTREAM_OVERLOAD = "UpstreamOverload"
    INTERNAL_FAILURE = "InternalFailure"


class ScrapeError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_FAILURE
    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the error envelope returned to callers."""
        return {
            "success": False,
            "error": self.message,
            "code": self.kind.value,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class InvalidRequestError(ScrapeError):
    """Malformed URL, format, action schema or action selector."""

    kind = ErrorKind.INVALID_REQUEST


class FetchFailureError(ScrapeError):
    """Terminal transport / navigation failure after proxy escalation."""

    kind = ErrorKind.FETCH_FAILURE


class ActionTimeoutError(ScrapeError):
    """An action or the overall request deadline expired."""

    kind = ErrorKind.ACTION_TIMEOUT
    retryable = True


class ElementNotFoundError(ScrapeError):
    """An action targeted a selector that is not present on the page."""

    kind = ErrorKind.ELEMENT_NOT_FOUND


class ExtractionFailureError(ScrapeError):
    """The LLM / schema step failed for one requested format."""

    kind = ErrorKind.EXTRACTION_FAILURE


class UpstreamOverloadError(ScrapeError):
    """Rate limited or saturated upstream; safe to retry later."""

    kind = ErrorKind.UPSTREAM_OVERLOAD
    retryable = True


class InternalFailureError(ScrapeError):
    """Unexpected engine fault."""

    kind = ErrorKind.INTERNAL_FAILURE
