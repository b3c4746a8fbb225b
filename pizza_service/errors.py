"""Error taxonomy shared by the data layer and the HTTP boundary.

Every error carries an HTTP-status-like code. The repository raises these and the
API layer is the only place that turns them into responses.
"""

from __future__ import annotations


class StatusCodeError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = str(message)
        if status_code is not None:
            self.status_code = int(status_code)


class ValidationError(StatusCodeError):
    """Missing or malformed input."""

    status_code = 400


class UnauthorizedError(StatusCodeError):
    """Bad credentials (401) or a failed role check (403)."""

    status_code = 401


class NotFoundError(StatusCodeError):
    status_code = 404


class ConflictError(StatusCodeError):
    """A database constraint was violated (duplicate email, referenced row, ...)."""

    status_code = 409


class DBConnectionError(StatusCodeError):
    """The database handshake failed. Not retried."""

    status_code = 500


class TransactionError(StatusCodeError):
    status_code = 500
