"""Typed failures surfaced by the feed, availability and record operations.

Each error carries a stable ``code`` and the HTTP ``status_code`` the API layer
maps it to, so callers can tell "you don't have access" apart from "something
broke" without string matching.
"""

from __future__ import annotations

from typing import Any


class TeamcalError(Exception):
    """Base class for all domain errors raised by teamcal."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthenticatedError(TeamcalError):
    """No viewer identity accompanied the request."""

    code = "UNAUTHENTICATED"
    status_code = 401


class PermissionDeniedError(TeamcalError):
    """The viewer is not a member of the requested scope."""

    code = "PERMISSION_DENIED"
    status_code = 403


class NotFoundError(TeamcalError):
    """A referenced project, organization or record does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidArgumentError(TeamcalError):
    """Malformed input such as an inverted feed window."""

    code = "INVALID_ARGUMENT"
    status_code = 400


class InternalError(TeamcalError):
    """A store query or normalization step failed."""

    code = "INTERNAL_ERROR"
    status_code = 500
