"""
core/errors.py -- Application error taxonomy.

Route handlers and stores raise these where a check fails; api/main.py holds
the single exception handler that turns them into {"message": ...} bodies.
Expected failures (bad input, missing session, policy denial, missing row,
duplicate) never reach the generic 500 handler.

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors with a known HTTP status.

    errors        -- optional list of {"field", "message"} dicts for 400s.
    clear_session -- when True the handler also deletes the session cookie.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        errors: list[dict] | None = None,
        clear_session: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors
        self.clear_session = clear_session


class ValidationFailed(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401


class Forbidden(AppError):
    status_code = 403


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 409
