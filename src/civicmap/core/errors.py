"""Error taxonomy for spatial queries.

Each error carries the message shown to the user and the HTTP status the
API renders it with. Details of backend failures are logged server-side
and never placed in ``message``.
"""

from __future__ import annotations


class CivicMapError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    default_message: str = "Database query failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(CivicMapError):
    """Malformed or missing parameters. No query is attempted."""

    status_code = 400
    default_message = "Invalid input"


class NotFound(CivicMapError):
    """A well-formed query matched no row."""

    status_code = 404
    default_message = "Not found"


class QueryTimeout(CivicMapError):
    """The backend statement timeout was exceeded. Retryable."""

    status_code = 504
    default_message = "Query timeout, zoom in or try again"


class BackendFailure(CivicMapError):
    """Any other database or transport failure."""

    status_code = 500
    default_message = "Database query failed"


class RequestCancelled(CivicMapError):
    """A client request was superseded. Discarded silently, never shown."""

    status_code = 499
    default_message = "Request cancelled"
