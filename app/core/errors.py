"""
Domain errors raised by services and translated to HTTP responses in app.main.

Every error carries the HTTP status it maps to and a short kind string that is
returned to the client next to the message.
"""


class LedgerError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    kind = "validation_error"


class LimitExceededError(LedgerError):
    kind = "limit_exceeded"


class NotFoundError(LedgerError):
    status_code = 404
    kind = "not_found"


class DuplicateError(LedgerError):
    status_code = 409
    kind = "duplicate"


class InvalidStateError(LedgerError):
    status_code = 409
    kind = "invalid_state"


class ConflictError(LedgerError):
    status_code = 409
    kind = "conflict"


class StaleWriteError(Exception):
    """A versioned write matched no document; the enclosing transaction is retried."""
