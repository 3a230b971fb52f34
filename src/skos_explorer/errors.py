"""
Exception types raised by skos-explorer.

Three kinds of failure can reach a caller:

- ``UnsupportedCapabilityError``: a caller insisted on a query shape that the
  endpoint's capabilities cannot express (query builders themselves only
  return ``None``).
- ``TransportError``: the SPARQL executor could not get a usable answer
  (network, HTTP status, timeout, malformed response).
- ``OperationCancelled``: a cancellation token was set before a query was
  issued and the caller asked for cancellation to be raised.

Partial results (some label rounds or exclusion queries failed) are not
exceptions; they are reported through the returned data and progress state.
"""
from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Transport failure categories, mapped from HTTP status and exceptions."""

    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_FAILED = "AUTH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"
    QUERY_ERROR = "QUERY_ERROR"
    UNKNOWN = "UNKNOWN"


class SkosExplorerError(Exception):
    """Base class for all skos-explorer errors."""


class UnsupportedCapabilityError(SkosExplorerError):
    """The endpoint lacks every relationship a required query depends on."""


class TransportError(SkosExplorerError):
    """A SPARQL request failed."""

    def __init__(self, code: ErrorCode, message: str, details: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @property
    def retryable(self) -> bool:
        return self.code not in (ErrorCode.AUTH_REQUIRED, ErrorCode.AUTH_FAILED)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class OperationCancelled(SkosExplorerError):
    """The operation was cancelled before its next query was issued."""


# HTTP status -> (code, message)
_HTTP_ERRORS: dict[int, tuple[ErrorCode, str]] = {
    400: (ErrorCode.QUERY_ERROR, "Invalid SPARQL query"),
    401: (ErrorCode.AUTH_REQUIRED, "Authentication required"),
    403: (ErrorCode.AUTH_FAILED, "Access denied. Check credentials."),
    404: (ErrorCode.NOT_FOUND, "Endpoint not found"),
    408: (ErrorCode.TIMEOUT, "Request timed out"),
}


def error_for_status(status: int, reason: str = "") -> TransportError:
    """Build a TransportError for an unsuccessful HTTP status code."""
    if status in _HTTP_ERRORS:
        code, message = _HTTP_ERRORS[status]
        return TransportError(code, message)
    if status in (500, 502, 503, 504):
        return TransportError(ErrorCode.SERVER_ERROR, f"Server error: {reason}".rstrip(": "))
    return TransportError(ErrorCode.UNKNOWN, f"HTTP {status}: {reason}".rstrip(": "))
