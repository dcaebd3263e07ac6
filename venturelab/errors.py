"""Error taxonomy for the idea lifecycle.

Every error carries the HTTP status the API surface renders it with.
"""
from __future__ import annotations


class VentureLabError(Exception):
    status_code = 500


class ValidationFailed(VentureLabError):
    """Malformed input (missing name/description, bad enum value, ...)."""
    status_code = 400


class NotFound(VentureLabError):
    status_code = 404


class StateConflict(VentureLabError):
    """Action attempted from a status that does not allow it."""
    status_code = 409


class UpstreamServiceFailed(VentureLabError):
    """LLM or document-store call failed."""
    status_code = 502

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ParseFailed(VentureLabError):
    """LLM returned non-JSON or the wrong shape where JSON was required."""
    status_code = 502


class ResearchFailed(UpstreamServiceFailed):
    pass


class ScoreParseFailed(ParseFailed):
    pass


class CompileFailed(VentureLabError):
    status_code = 502
